from typing import Optional


class PRSecError(Exception):
    pass


class ConfigurationError(PRSecError):
    pass


class CredentialError(ConfigurationError):
    """The App private key is missing, cannot be parsed, or refused to sign."""


class TokenExchangeError(PRSecError):
    def __init__(self, message: str, installation_id: Optional[int] = None,
                 status_code: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.installation_id = installation_id
        self.status_code = status_code
        self.reason = reason


class WebhookVerificationFailure(Exception):
    pass


class CheckExecutionError(PRSecError):
    def __init__(
        self,
        message: str,
        stage: str,
        installation_id: Optional[int] = None,
        batch_index: Optional[int] = None,
        reported_count: Optional[int] = None,
        filtered_count: Optional[int] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.installation_id = installation_id
        self.batch_index = batch_index
        self.reported_count = reported_count
        self.filtered_count = filtered_count

    def __str__(self) -> str:
        where = self.stage
        if self.batch_index is not None:
            where = f"{where} batch={self.batch_index}"
        if self.installation_id is not None:
            where = f"{where} installation={self.installation_id}"
        return f"{self.args[0]} ({where})"
