"""
Test values fixtures for parameter binding tests.

Provides one value per runtime kind the translator distinguishes, together
with the wire type it is expected to bind as.
"""
import decimal
import math

import pytest
from lecturedb.types import WireType


@pytest.fixture(scope='module')
def value_dict():
    """Return a dictionary of test values for all major kinds"""
    return {
        'int_value': 42,
        'negative_int': -32768,
        'whole_float': 7.0,
        'float_value': math.pi,
        'decimal_value': decimal.Decimal('123456.789123'),
        'whole_decimal': decimal.Decimal('10.00'),
        'bool_true': True,
        'bool_false': False,
        'text_value': 'Physics',
        'unicode_value': 'Química básica',
        'null_value': None,
        }


@pytest.fixture(scope='module')
def expected_wire_types():
    return {
        'int_value': WireType.INTEGER,
        'negative_int': WireType.INTEGER,
        'whole_float': WireType.INTEGER,
        'float_value': WireType.FLOAT,
        'decimal_value': WireType.FLOAT,
        'whole_decimal': WireType.INTEGER,
        'bool_true': WireType.BIT,
        'bool_false': WireType.BIT,
        'text_value': WireType.NVARCHAR,
        'unicode_value': WireType.NVARCHAR,
        'null_value': WireType.NVARCHAR,
        }
