from catalog_adapter.validation import (
    AllOfValidator,
    AnyOfValidator,
    AnyValidator,
    ObjectValidator,
    compile_schema,
)


def test_required_property_reported_by_name():
    validator = compile_schema(
        {"type": "object", "properties": {"a": {"type": "string"}, "b": {"type": "number"}}, "required": ["a"]}
    )

    missing = validator({"b": 1})
    present = validator({"a": "x"})

    assert not missing.valid
    assert [(e.path, e.message) for e in missing.errors] == [("a", "Required")]
    assert present.valid


def test_unknown_properties_preserved_by_default():
    validator = compile_schema({"type": "object", "properties": {"a": {"type": "string"}}})

    result = validator({"a": "x", "extra": 1})

    assert result.valid
    assert result.data == {"a": "x", "extra": 1}


def test_additional_properties_false_rejects_unknown_keys():
    validator = compile_schema(
        {"type": "object", "properties": {"a": {"type": "string"}}, "additionalProperties": False}
    )

    result = validator({"a": "x", "extra": 1})

    assert not result.valid
    assert result.errors[0].path == "extra"


def test_nested_issue_paths_are_dotted():
    validator = compile_schema(
        {
            "type": "object",
            "properties": {
                "items": {
                    "type": "array",
                    "items": {"type": "object", "properties": {"name": {"type": "string"}}},
                }
            },
        }
    )

    result = validator({"items": [{"name": "ok"}, {"name": 3}]})

    assert [e.path for e in result.errors] == ["items.1.name"]
    assert result.errors[0].expected == "string"
    assert result.errors[0].received == "integer"


def test_root_issue_path():
    result = compile_schema({"type": "string"})(12)

    assert result.errors[0].path == "$"


def test_string_constraints_and_formats():
    bounded = compile_schema({"type": "string", "minLength": 2, "maxLength": 3, "pattern": "^[a-z]+$"})
    email = compile_schema({"type": "string", "format": "email"})
    uri = compile_schema({"type": "string", "format": "uri"})
    ident = compile_schema({"type": "string", "format": "uuid"})

    assert bounded("ab").valid
    assert not bounded("a").valid
    assert not bounded("abcd").valid
    assert not bounded("AB").valid
    assert email("someone@example.com").valid
    assert not email("not-an-email").valid
    assert uri("https://example.com/path").valid
    assert not uri("not a url").valid
    assert ident("123e4567-e89b-12d3-a456-426614174000").valid
    assert not ident("123").valid


def test_numbers():
    integer = compile_schema({"type": "integer", "minimum": 1, "maximum": 10})
    number = compile_schema({"type": "number"})

    assert integer(5).valid
    assert integer(5.0).valid
    assert not integer(5.5).valid
    assert not integer(0).valid
    assert not integer(11).valid
    assert not integer(True).valid
    assert number(1.5).valid
    assert not number("1.5").valid


def test_nullable_and_type_lists():
    nullable = compile_schema({"type": "string", "nullable": True})
    union = compile_schema({"type": ["string", "null"]})
    multi = compile_schema({"type": ["string", "integer"]})

    assert nullable(None).valid
    assert union(None).valid
    assert union("x").valid
    assert not union(1).valid
    assert isinstance(multi, AnyOfValidator)
    assert multi(1).valid
    assert not multi([]).valid


def test_properties_without_type_is_object():
    validator = compile_schema({"properties": {"a": {"type": "string"}}, "required": ["a"]})

    assert isinstance(validator, ObjectValidator)
    assert not validator({}).valid


def test_all_of_requires_every_branch():
    validator = compile_schema(
        {
            "allOf": [
                {"type": "object", "required": ["a"], "properties": {"a": {"type": "string"}}},
                {"type": "object", "required": ["b"], "properties": {"b": {"type": "string"}}},
            ]
        }
    )

    assert validator({"a": "x", "b": "y"}).valid
    assert [e.path for e in validator({"a": "x"}).errors] == ["b"]


def test_one_of_and_any_of_accept_any_branch():
    for keyword in ("oneOf", "anyOf"):
        validator = compile_schema({keyword: [{"type": "string"}, {"type": "integer"}]})

        assert validator("x").valid
        assert validator(2).valid
        result = validator(None)
        assert not result.valid
        assert result.errors[0].expected == "union"


def test_typed_schema_with_composition_checks_both():
    validator = compile_schema(
        {
            "type": "object",
            "required": ["kind"],
            "properties": {"kind": {"type": "string"}},
            "anyOf": [{"type": "object", "required": ["a"]}, {"type": "object", "required": ["b"]}],
        }
    )

    assert isinstance(validator, AllOfValidator)
    assert validator({"kind": "k", "a": 1}).valid
    assert not validator({"kind": "k"}).valid


def test_unsupported_shapes_fall_back_to_any():
    assert isinstance(compile_schema({"$ref": "#/components/schemas/Node"}), AnyValidator)
    assert isinstance(compile_schema({}), AnyValidator)
    assert isinstance(compile_schema("not a schema"), AnyValidator)
    assert isinstance(compile_schema({"type": "file"}), AnyValidator)
    assert compile_schema({"type": "mystery"})(object()).valid


def test_invalid_pattern_is_ignored():
    validator = compile_schema({"type": "string", "pattern": "(["})

    assert validator("anything").valid


def test_validators_are_reusable():
    validator = compile_schema({"type": "object", "required": ["a"]})

    assert not validator({}).valid
    assert validator({"a": 1}).valid
    assert not validator({}).valid


def test_integers_beyond_float_range():
    integer = compile_schema({"type": "integer"})
    bounded = compile_schema({"type": "integer", "maximum": 100})

    assert integer(10**400).valid
    assert integer(-(10**400)).valid
    assert not bounded(10**400).valid
    assert bounded(10**400).errors[0].expected == "too_big"
