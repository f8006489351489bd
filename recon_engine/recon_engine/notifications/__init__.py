"""Payment failure notifications and the mail transport they use."""

from recon_engine.notifications.dispatcher import PaymentFailureNotifier
from recon_engine.notifications.mailer import EmailSender, HttpEmailSender

__all__ = ["EmailSender", "HttpEmailSender", "PaymentFailureNotifier"]
