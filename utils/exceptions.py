"""
Exceptions raised across the QuickBooks job-cost reconciliation
"""

from typing import Optional


class JobCostError(Exception):
    """Base exception for job-cost reconciliation errors"""

    pass


class ConfigurationError(JobCostError):
    """Missing or invalid configuration"""

    pass


class NotConnectedError(JobCostError):
    """No usable QuickBooks token material on file, or token refresh failed"""

    pass


class QBOFaultError(JobCostError):
    """QuickBooks API answered with a Fault object"""

    def __init__(self, message: str, detail: str = '', code: str = '',
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.code = code
        self.status_code = status_code

    @property
    def text(self) -> str:
        """Message and detail joined, for fault-text matching"""
        return f"{self.message} {self.detail}".strip()


class EntityNotSupportedError(JobCostError):
    """Entity cannot be queried on this QuickBooks company"""

    def __init__(self, entity: str, fault_text: str = ''):
        super().__init__(f"QuickBooks entity '{entity}' is not queryable: {fault_text}")
        self.entity = entity
        self.fault_text = fault_text
