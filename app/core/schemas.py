from typing import Any, Dict, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr


UNKNOWN_DATA_TYPE = "unknown"

# One result row: column name -> value, in the engine's column order
Record = Dict[str, Any]
ResultSet = List[Record]


# =========================
# QUERY
# =========================
class QueryRequest(BaseModel):
    # "catalog" / "daxQuery" are the field names older clients send
    dataset: str = Field(
        min_length=1, validation_alias=AliasChoices("dataset", "catalog")
    )
    query: str = Field(
        min_length=1, validation_alias=AliasChoices("query", "daxQuery")
    )


# =========================
# AUTH
# =========================
class AccessToken(BaseModel):
    """Bearer token issued by the identity provider. Never cached."""

    value: SecretStr
    token_type: str = "Bearer"
    expires_in: int = 0


# =========================
# METADATA
# =========================
class SchemaModel(BaseModel):
    # Serialized with the PascalCase keys the frontend reads
    model_config = ConfigDict(populate_by_name=True)


class ColumnSchema(SchemaModel):
    name: str = Field(alias="Name")
    data_type: str = Field(default=UNKNOWN_DATA_TYPE, alias="DataType")


class TableSchema(SchemaModel):
    name: str = Field(alias="Name")
    columns: List[ColumnSchema] = Field(default_factory=list, alias="Columns")


class MeasureSchema(SchemaModel):
    name: str = Field(alias="Name")
    caption: str = Field(default="", alias="Caption")
    table_name: str = Field(default="", alias="TableName")
    expression: str = Field(default="", alias="Expression")


class Metadata(SchemaModel):
    tables: List[TableSchema] = Field(default_factory=list, alias="Tables")
    measures: List[MeasureSchema] = Field(default_factory=list, alias="Measures")
