# ordertrack/messages.py

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ordertrack.merge import ImportSummary, MatchField


# -----------------------
# Secondary -> primary
# -----------------------

class DeleteOrder(BaseModel):
    type: Literal["DELETE_ORDER"] = "DELETE_ORDER"
    id: str


class ImportOrders(BaseModel):
    type: Literal["IMPORT_ORDERS"] = "IMPORT_ORDERS"
    rows: list[dict[str, Any]] = Field(default_factory=list)
    overwrite: bool = False
    matchField: MatchField = MatchField.ORDER_NUMBER


class RestoreBackup(BaseModel):
    type: Literal["RESTORE_BACKUP"] = "RESTORE_BACKUP"
    records: list[dict[str, Any]] = Field(default_factory=list)


class ClearAllData(BaseModel):
    type: Literal["CLEAR_ALL_DATA"] = "CLEAR_ALL_DATA"


# -----------------------
# Primary -> secondary
# -----------------------

class OrderDeleted(BaseModel):
    type: Literal["ORDER_DELETED"] = "ORDER_DELETED"
    id: str


class OrdersImported(BaseModel):
    type: Literal["ORDERS_IMPORTED"] = "ORDERS_IMPORTED"
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0

    @classmethod
    def from_summary(cls, summary: ImportSummary) -> "OrdersImported":
        return cls(**summary.as_dict())


class BackupRestored(BaseModel):
    type: Literal["BACKUP_RESTORED"] = "BACKUP_RESTORED"
    total: int


class DataCleared(BaseModel):
    type: Literal["DATA_CLEARED"] = "DATA_CLEARED"


class Error(BaseModel):
    type: Literal["ERROR"] = "ERROR"
    message: str


Request = Annotated[
    Union[DeleteOrder, ImportOrders, RestoreBackup, ClearAllData],
    Field(discriminator="type"),
]
Reply = Annotated[
    Union[OrderDeleted, OrdersImported, BackupRestored, DataCleared, Error],
    Field(discriminator="type"),
]

_REQUEST_ADAPTER = TypeAdapter(Request)
_REPLY_ADAPTER = TypeAdapter(Reply)


def parse_request(data: Any) -> BaseModel:
    """Raises pydantic.ValidationError for unknown types or bad payloads."""
    if isinstance(data, BaseModel):
        return data
    return _REQUEST_ADAPTER.validate_python(data)


def parse_reply(data: Any) -> BaseModel:
    if isinstance(data, BaseModel):
        return data
    return _REPLY_ADAPTER.validate_python(data)
