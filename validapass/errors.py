class ValidaPassError(Exception):
    """Base class for errors raised by the provisioning core."""


class ProvisioningError(ValidaPassError):
    """No participant could be obtained for a resolved sale."""


class CategoryMapError(ValidaPassError):
    """The offer -> category table could not be loaded."""


class MailError(ValidaPassError):
    """The mail service rejected or failed a send."""


class MailNotConfigured(MailError):
    """No API key for the mail service."""
