import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from core.errors import RowConversionError
from core.schema_ir import ColumnDescriptor, TableSpec
from core.type_registry import TypeRegistry
from core.value_converter import convert, convert_row, parse_array_string, quote_literal, NULL


def column(name, data_type, udt_name=None, **kwargs):
    return ColumnDescriptor(
        name=name,
        raw_data_type=data_type,
        udt_name=udt_name or data_type,
        logical_type=TypeRegistry.resolve(data_type, udt_name or data_type),
        **kwargs
    )


class TestParseArrayString(unittest.TestCase):

    def test_quoted_elements(self):
        self.assertEqual(parse_array_string('{"a","b"}'), ['a', 'b'])

    def test_unquoted_elements_are_trimmed(self):
        self.assertEqual(parse_array_string('{ a , b ,c}'), ['a', 'b', 'c'])

    def test_empty_array(self):
        self.assertEqual(parse_array_string('{}'), [])

    def test_null_element(self):
        self.assertEqual(parse_array_string('{a,NULL,"NULL"}'), ['a', None, 'NULL'])

    def test_comma_and_escape_inside_quotes(self):
        self.assertEqual(parse_array_string('{"x,y","say \\"hi\\""}'), ['x,y', 'say "hi"'])

    def test_not_an_array(self):
        self.assertIsNone(parse_array_string('plain text'))
        self.assertIsNone(parse_array_string('{unterminated'))

    def test_nested_arrays(self):
        self.assertEqual(parse_array_string('{{1,2},{3,4}}'), [['1', '2'], ['3', '4']])

    def test_nested_quoted_elements_keep_braces(self):
        self.assertEqual(parse_array_string('{{"a}","b,c"},{NULL,"d"}}'), [['a}', 'b,c'], [None, 'd']])

    def test_json_elements_are_unquoted_text(self):
        self.assertEqual(parse_array_string('{"{\\"k\\": 1}",NULL}'), ['{"k": 1}', None])


class TestConvert(unittest.TestCase):

    def setUp(self):
        self.tags = column('tags', 'ARRAY', '_text')
        self.ids = column('member_ids', 'ARRAY', '_uuid')
        self.payload = column('payload', 'jsonb')
        self.created = column('created_at', 'timestamp with time zone', 'timestamptz')
        self.birthday = column('birthday', 'date')
        self.name = column('name', 'text')

    def test_null_always_wins(self):
        for col in (self.tags, self.payload, self.created, self.birthday, self.name):
            self.assertEqual(convert(None, col), NULL)

    def test_text_array_from_list(self):
        self.assertEqual(convert(['a', 'b'], self.tags), "ARRAY['a','b']::text[]")

    def test_brace_string_matches_native_list(self):
        self.assertEqual(convert('{"a","b"}', self.tags), convert(['a', 'b'], self.tags))
        self.assertEqual(convert('{a, b}', self.tags), convert(['a', 'b'], self.tags))

    def test_native_and_brace_forms_agree(self):
        scores = column('scores', 'ARRAY', '_int4')
        docs = column('docs', 'ARRAY', '_jsonb')
        cases = [
            (self.tags, ['a,b', '{c}', 'say "hi"', None], '{"a,b","{c}","say \\"hi\\"",NULL}'),
            (scores, [1, 2, 3], '{1,2,3}'),
            (self.ids, ['0b1c5a52-6d7e-4d3f-9a55-0f3c1c2d4e5f', 'c0ffee00-0000-4000-8000-000000000001'],
             '{0b1c5a52-6d7e-4d3f-9a55-0f3c1c2d4e5f,c0ffee00-0000-4000-8000-000000000001}'),
            (docs, [{'k': 1}, {'name': 'a,b'}], '{"{\\"k\\": 1}","{\\"name\\": \\"a,b\\"}"}'),
            (docs, [[1, 2], 'x'], '{"[1, 2]","\\"x\\""}'),
        ]
        for col, native, text in cases:
            with self.subTest(column=col.name, text=text):
                self.assertEqual(convert(text, col), convert(native, col))

    def test_jsonb_array_elements_not_double_encoded(self):
        docs = column('docs', 'ARRAY', '_jsonb')
        self.assertEqual(convert('{"{\\"k\\": 1}"}', docs), "ARRAY['{\"k\": 1}']::jsonb[]")
        self.assertEqual(convert([{'k': 1}], docs), "ARRAY['{\"k\": 1}']::jsonb[]")

    def test_multidimensional_array(self):
        grid = column('grid', 'ARRAY', '_int4')
        expected = "ARRAY[ARRAY['1','2'],ARRAY['3','4']]::integer[]"
        self.assertEqual(convert([[1, 2], [3, 4]], grid), expected)
        self.assertEqual(convert('{{1,2},{3,4}}', grid), expected)

    def test_empty_array_is_typed(self):
        self.assertEqual(convert([], self.ids), "ARRAY[]::uuid[]")
        self.assertEqual(convert('{}', self.ids), "ARRAY[]::uuid[]")

    def test_array_elements_escape_quotes(self):
        self.assertEqual(convert(["it's"], self.tags), "ARRAY['it''s']::text[]")

    def test_array_null_element(self):
        self.assertEqual(convert(['a', None], self.tags), "ARRAY['a',NULL]::text[]")

    def test_jsonb_object(self):
        self.assertEqual(convert({'k': "it's"}, self.payload), "'{\"k\": \"it''s\"}'::jsonb")

    def test_jsonb_list_is_json_not_array(self):
        self.assertEqual(convert([1, 2], self.payload), "'[1, 2]'::jsonb")

    def test_timestamp_iso(self):
        value = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
        self.assertEqual(convert(value, self.created), "'2024-03-01T12:30:00+00:00'")

    def test_timestamp_string_passthrough(self):
        self.assertEqual(convert('2024-03-01 12:30:00', self.created), "'2024-03-01 12:30:00'")

    def test_date_truncates_time(self):
        self.assertEqual(convert(datetime(2024, 3, 1, 23, 59), self.birthday), "'2024-03-01'")
        self.assertEqual(convert(date(2024, 3, 1), self.birthday), "'2024-03-01'")
        self.assertEqual(convert('2024-03-01T10:00:00Z', self.birthday), "'2024-03-01'")

    def test_dict_in_untyped_column_is_jsonb(self):
        self.assertEqual(convert({'a': 1}, self.name), "'{\"a\": 1}'::jsonb")

    def test_scalar_default(self):
        self.assertEqual(convert("O'Brien", self.name), "'O''Brien'")
        self.assertEqual(convert(42, column('n', 'integer', 'int4')), "'42'")
        self.assertEqual(convert(Decimal('1.50'), column('n', 'numeric')), "'1.50'")
        self.assertEqual(convert(True, column('flag', 'boolean', 'bool')), "'true'")

    def test_bytea(self):
        self.assertEqual(convert(b'\x00\xff', column('blob', 'bytea')), "'\\x00ff'::bytea")

    def test_conversion_failure_raises_row_error(self):
        class Unprintable:
            def __str__(self):
                raise ValueError("no string form")

        with self.assertRaises(RowConversionError) as ctx:
            convert(Unprintable(), self.name)
        self.assertEqual(ctx.exception.column, 'name')

    def test_quote_literal(self):
        self.assertEqual(quote_literal("a'b"), "'a''b'")


class TestConvertRow(unittest.TestCase):

    def test_column_order_and_missing_keys(self):
        spec = TableSpec(
            name='users',
            columns=(column('id', 'uuid'), column('email', 'text'), column('tags', 'ARRAY', '_text')),
        )
        row = {'tags': ['x'], 'id': 'u1'}
        self.assertEqual(convert_row(row, spec), ["'u1'", 'NULL', "ARRAY['x']::text[]"])


if __name__ == '__main__':
    unittest.main()
