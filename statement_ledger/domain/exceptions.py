"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class MetadataExtractionError(DomainException):
    """Statement banner/header is missing a field every row depends on"""

    pass


class RowParseError(DomainException):
    """A single statement row could not be parsed"""

    pass


class UnsupportedFileError(DomainException):
    """File is unreadable or no parser handles its issuer"""

    pass


class CardNotFoundError(DomainException):
    """Referenced card does not exist in the registry"""

    pass


class ReconciliationError(DomainException):
    """Installment placeholder or merge target could not be located"""

    pass


class BusinessMergeChainError(DomainException):
    """Business merge chain is circular or points to a missing business"""

    def __init__(self, message: str, last_good=None):
        super().__init__(message)
        self.last_good = last_good


class ExchangeRateAPIError(DomainException):
    """Exchange rate API returned an error or is unavailable"""

    pass


class JobSubmissionError(DomainException):
    """Background job could not be submitted after all retries"""

    pass
