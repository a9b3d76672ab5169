import tempfile
import unittest
from pathlib import Path

from ddb_bootstrap.errors import InvalidSchema
from ddb_bootstrap.schema import KeyAttribute, KeyType, load_descriptor, parse


USERS = [
    {"name": "users", "primaryKeyAttribute": "id", "primaryKeyType": "STRING", "readCapacity": 1, "writeCapacity": 1},
    {
        "name": "users_email_lookup",
        "primaryKeyAttribute": "email",
        "primaryKeyType": "S",
        "readCapacity": 5,
        "writeCapacity": 5,
    },
]


class ParseTests(unittest.TestCase):
    def test_parses_tables_in_order(self) -> None:
        desc = parse(USERS)
        self.assertEqual(desc.names, ["users", "users_email_lookup"])
        self.assertEqual(desc.tables[0].primary_key, KeyAttribute("id", KeyType.STRING))
        self.assertEqual(desc.tables[1].primary_key.type, KeyType.STRING)
        self.assertEqual(desc.tables[1].read_capacity, 5)
        self.assertIsNone(desc.tables[0].sort_key)

    def test_accepts_tables_mapping_and_snake_case(self) -> None:
        desc = parse({"tables": [{
            "name": "events",
            "primary_key_attribute": "pk",
            "primary_key_type": "number",
            "sort_key_attribute": "ts",
            "sort_key_type": "N",
            "read_capacity": 2,
            "write_capacity": 3,
        }]})
        spec = desc.tables[0]
        self.assertEqual(spec.primary_key, KeyAttribute("pk", KeyType.NUMBER))
        self.assertEqual(spec.sort_key, KeyAttribute("ts", KeyType.NUMBER))

    def test_empty_list_is_an_empty_descriptor(self) -> None:
        self.assertEqual(len(parse([])), 0)

    def test_collects_every_problem_in_one_pass(self) -> None:
        doc = [
            {"primaryKeyAttribute": "id", "primaryKeyType": "STRING", "readCapacity": 1, "writeCapacity": 1},
            {"name": "a", "primaryKeyAttribute": "id", "primaryKeyType": "TEXT", "readCapacity": 1, "writeCapacity": 1},
            {"name": "b", "primaryKeyAttribute": "id", "primaryKeyType": "STRING", "readCapacity": 0, "writeCapacity": -2},
            {"name": "b", "primaryKeyAttribute": "id", "primaryKeyType": "STRING", "readCapacity": 1, "writeCapacity": 1},
        ]
        with self.assertRaises(InvalidSchema) as ctx:
            parse(doc)
        problems = ctx.exception.problems
        self.assertEqual(len(problems), 5)
        joined = "\n".join(problems)
        self.assertIn("tables[0]: missing table name", joined)
        self.assertIn("unknown primary key type 'TEXT'", joined)
        self.assertIn("read_capacity must be >= 1", joined)
        self.assertIn("write_capacity must be >= 1", joined)
        self.assertIn("duplicate table name", joined)

    def test_rejects_non_integer_capacity(self) -> None:
        doc = [{"name": "t", "primaryKeyAttribute": "id", "primaryKeyType": "S", "readCapacity": True, "writeCapacity": "5"}]
        with self.assertRaises(InvalidSchema) as ctx:
            parse(doc)
        self.assertEqual(len(ctx.exception.problems), 2)

    def test_reports_unknown_fields_and_non_mapping_entries(self) -> None:
        doc = [
            "users",
            {"name": "t", "primaryKeyAttribute": "id", "primaryKeyType": "S", "readCapacity": 1, "writeCapacity": 1, "ttl": "x"},
        ]
        with self.assertRaises(InvalidSchema) as ctx:
            parse(doc)
        self.assertEqual(
            ctx.exception.problems,
            ["tables[0]: expected a mapping, got str", "tables[1]: unknown field 'ttl'"],
        )

    def test_sort_key_must_differ_from_primary_key(self) -> None:
        doc = [{
            "name": "t", "primaryKeyAttribute": "id", "primaryKeyType": "S",
            "sortKeyAttribute": "id", "sortKeyType": "S", "readCapacity": 1, "writeCapacity": 1,
        }]
        with self.assertRaises(InvalidSchema):
            parse(doc)

    def test_top_level_scalar_is_invalid(self) -> None:
        with self.assertRaises(InvalidSchema):
            parse("users")


class LoadDescriptorTests(unittest.TestCase):
    def test_inline_json(self) -> None:
        desc = load_descriptor(
            '[{"name": "users", "primaryKeyAttribute": "id", "primaryKeyType": "STRING", "readCapacity": 1, "writeCapacity": 1}]'
        )
        self.assertEqual(desc.names, ["users"])

    def test_toml_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "schema.toml"
            path.write_text(
                '[[tables]]\nname = "users"\nprimaryKeyAttribute = "id"\nprimaryKeyType = "STRING"\n'
                "readCapacity = 1\nwriteCapacity = 1\n",
                encoding="utf-8",
            )
            desc = load_descriptor(str(path))
        self.assertEqual(desc.names, ["users"])

    def test_missing_file_is_invalid_schema(self) -> None:
        with self.assertRaises(InvalidSchema) as ctx:
            load_descriptor("/nonexistent/schema.json")
        self.assertIn("schema file not found", ctx.exception.problems[0])

    def test_bad_inline_json_is_invalid_schema(self) -> None:
        with self.assertRaises(InvalidSchema):
            load_descriptor("[{not json")


if __name__ == "__main__":
    unittest.main()
