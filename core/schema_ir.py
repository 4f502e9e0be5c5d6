from dataclasses import dataclass, field
from typing import Optional, Tuple, Dict, Any

from core.type_registry import TypeInfo


@dataclass(frozen=True)
class ColumnDescriptor:
    """Column as read from the source catalog, with its resolved logical type"""
    name: str
    raw_data_type: str
    udt_name: str
    logical_type: TypeInfo
    nullable: bool = True
    default_expr: Optional[str] = None
    max_length: Optional[int] = None


@dataclass(frozen=True)
class TableSpec:
    """Table definition; column order matches the catalog ordinal_position"""
    name: str
    columns: Tuple[ColumnDescriptor, ...]
    primary_key: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(col.name for col in self.columns)

    def get_column(self, name: str) -> Optional[ColumnDescriptor]:
        for col in self.columns:
            if col.name == name:
                return col
        return None
