"""
Parameter type handling for translated statements.

This module provides:
- WireType: the backend parameter types a binding can carry
- Param: an explicit caller-supplied type tag for one parameter
- ParameterBinding: the (name, wire type, value) triple built per placeholder
- infer_wire_type: runtime value-kind inference used when no tag is given
"""
import decimal
import logging
import math
from dataclasses import dataclass
from enum import Enum
from numbers import Integral, Real
from typing import Any

import sqlalchemy as sa

logger = logging.getLogger(__name__)


class WireType(Enum):
    """Backend parameter types.

    Values name the SQL Server type each kind binds as.
    """
    INTEGER = 'INT'
    FLOAT = 'FLOAT'
    BIT = 'BIT'
    NVARCHAR = 'NVARCHAR'

    def sa_type(self) -> sa.types.TypeEngine:
        """Return the SQLAlchemy type used to bind this wire type."""
        return _SA_TYPES[self]()


_SA_TYPES: dict[WireType, type[sa.types.TypeEngine]] = {
    WireType.INTEGER: sa.Integer,
    WireType.FLOAT: sa.Float,
    WireType.BIT: sa.Boolean,
    WireType.NVARCHAR: sa.Unicode,
}


@dataclass(frozen=True, slots=True)
class Param:
    """Explicitly typed parameter value.

    Wrapping a value in `Param` skips runtime inference:

    >>> Param(3, WireType.FLOAT).wire_type
    <WireType.FLOAT: 'FLOAT'>
    """
    value: Any
    wire_type: WireType


@dataclass(frozen=True, slots=True)
class ParameterBinding:
    """Synthetic named binding for one positional placeholder."""
    name: str
    wire_type: WireType
    value: Any

    def bindparam(self) -> sa.BindParameter:
        """Build the SQLAlchemy bind parameter for this binding."""
        return sa.bindparam(self.name, self.value, type_=self.wire_type.sa_type())


def _is_whole(value: Real | decimal.Decimal) -> bool:
    if isinstance(value, Integral):
        return True
    if isinstance(value, decimal.Decimal):
        return value.is_finite() and value == value.to_integral_value()
    return math.isfinite(value) and float(value).is_integer()


def infer_wire_type(value: Any) -> WireType:
    """Infer the wire type from the runtime kind of a value.

    Booleans bind as BIT, whole-number numerics as INTEGER, other numerics as
    FLOAT and everything else (text, None, dates) as NVARCHAR.

    >>> infer_wire_type(True), infer_wire_type(4), infer_wire_type(4.0)
    (<WireType.BIT: 'BIT'>, <WireType.INTEGER: 'INT'>, <WireType.INTEGER: 'INT'>)
    >>> infer_wire_type(4.5), infer_wire_type('4')
    (<WireType.FLOAT: 'FLOAT'>, <WireType.NVARCHAR: 'NVARCHAR'>)
    """
    if isinstance(value, bool):
        return WireType.BIT
    if isinstance(value, (Real, decimal.Decimal)):
        return WireType.INTEGER if _is_whole(value) else WireType.FLOAT
    return WireType.NVARCHAR


def convert_value(value: Any) -> Any:
    """Convert a parameter value to what the driver should receive.

    NaN floats become NULL.
    """
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def make_binding(index: int, param: Any) -> ParameterBinding:
    """Create the binding for the placeholder at `index`."""
    name = f'p{index}'
    if isinstance(param, Param):
        return ParameterBinding(name, param.wire_type, convert_value(param.value))
    wire_type = infer_wire_type(param)
    value = convert_value(param)
    if wire_type is WireType.INTEGER and not isinstance(value, Integral):
        value = int(value)
    return ParameterBinding(name, wire_type, value)
