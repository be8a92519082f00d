"""
User-visible success/failure messages. Fire-and-forget: a sink that breaks
must never affect the mutation that triggered it.
"""
import abc
import click

from taskpulse.logs import get_logger

log = get_logger("notify")


class Notifier(abc.ABC):

    @abc.abstractmethod
    def success(self, message: str):
        pass

    @abc.abstractmethod
    def error(self, message: str):
        pass


class LogNotifier(Notifier):
    def success(self, message: str):
        log.info(message)

    def error(self, message: str):
        log.warning(message)


class EchoNotifier(Notifier):
    """Toasts for the terminal."""

    def success(self, message: str):
        click.echo(f"✅ {message}")

    def error(self, message: str):
        click.echo(f"❌ {message}", err=True)


class RecordingNotifier(Notifier):
    """Keeps every message; handy for tests and for batch summaries."""

    def __init__(self):
        self.messages = []

    def success(self, message: str):
        self.messages.append(("success", message))

    def error(self, message: str):
        self.messages.append(("error", message))
