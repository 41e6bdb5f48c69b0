"""
Pydantic schemas for SAP Gateway OData error payloads.

SAP Gateway answers failed OData v2 calls with a JSON document like:

    {
      "error": {
        "code": "005056A509B11EE1B9A8FEC11C21D78E",
        "message": {
          "lang": "en",
          "value": "Resource not found for the segment 'Address2'."
        },
        "innererror": {
          "transactionid": "C83CB3D2A1420000E00609D31E196BD4",
          "timestamp": "20210524082515.9921880",
          "Error_Resolution": {
            "SAP_Transaction": "Run transaction /IWFND/ERROR_LOG ...",
            "SAP_Note": "See SAP Note 1797736 for error analysis"
          }
        }
      }
    }

An invalid service name is answered with HTTP 403 and an 'innererror'
carrying an 'application' block with the service namespace and id.
The 'innererror' structure varies per entity and status code, so
unknown keys are kept for logging.
"""

from pydantic import BaseModel, Field, validator
from typing import Optional


class ErrorMessage(BaseModel):
    lang: Optional[str] = None
    value: Optional[str] = None


class ErrorApplication(BaseModel):
    component_id: Optional[str] = None
    service_namespace: Optional[str] = None
    service_id: Optional[str] = None
    service_version: Optional[str] = None


class InnerError(BaseModel):
    transactionid: Optional[str] = None
    timestamp: Optional[str] = None
    application: Optional[ErrorApplication] = None

    class Config:
        extra = "allow"


class ErrorDetail(BaseModel):
    code: Optional[str] = None
    message: Optional[ErrorMessage] = None
    innererror: Optional[InnerError] = None

    @validator("message", pre=True)
    def wrap_plain_message(cls, v):
        """OData v4 style payloads send the message as a bare string"""
        if isinstance(v, str):
            return {"value": v}
        return v


class ODataError(BaseModel):
    """Top level SAP Gateway error document"""

    error: Optional[ErrorDetail] = Field(None)

    @property
    def message_value(self) -> Optional[str]:
        if self.error is not None and self.error.message is not None:
            return self.error.message.value
        return None

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error is not None else None

    @property
    def names_service(self) -> bool:
        """True when SAP reported which service application it resolved"""
        return (
            self.error is not None
            and self.error.innererror is not None
            and self.error.innererror.application is not None
        )
