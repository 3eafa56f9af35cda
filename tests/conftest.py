from dataclasses import replace
from pathlib import Path

import pytest

from plugbind import (
    Casing, Enum, EnumOptions, Field, Function, FunctionArg, FunctionList,
    IRLoader, Struct, Tuple, TypeIdent, TypeMap, Unit, Variant,
)

SAMPLES = Path(__file__).resolve().parent.parent / "samples"


def ident(text: str) -> TypeIdent:
    return TypeIdent.parse(text)


def shape_enum(options: EnumOptions) -> Enum:
    return Enum(
        name="Shape",
        variants=(
            Variant("Empty", Unit()),
            Variant("Circle", Struct("Circle", fields=(Field("radius", ident("f64")),))),
            Variant("Labelled", Tuple((ident("Label"),))),
        ),
        options=options,
    )


LABEL = Struct("Label", fields=(Field("text_value", ident("String")), Field("hint", ident("Option<String>"))))

ENCODINGS = {
    "external": EnumOptions(variant_casing=Casing.SNAKE_CASE),
    "adjacent": EnumOptions(variant_casing=Casing.CAMEL_CASE, tag_prop_name="type", content_prop_name="payload"),
    "internal": EnumOptions(variant_casing=Casing.SCREAMING_SNAKE_CASE, tag_prop_name="kind"),
    "untagged": EnumOptions(untagged=True),
}


@pytest.fixture
def point():
    return Struct("Point", fields=(Field("x", ident("i32")), Field("y", ident("i32"))))


@pytest.fixture
def add_function():
    return Function(
        name="add",
        args=(FunctionArg("a", ident("i32")), FunctionArg("b", ident("i32"))),
        return_type=ident("i32"),
    )


@pytest.fixture
def fetch_function():
    return Function(
        name="fetch",
        args=(FunctionArg("url", ident("String")),),
        return_type=ident("Bytes"),
        is_async=True,
    )


@pytest.fixture
def scenario(add_function, fetch_function):
    """add/fetch exported by the plugin, with sum/download as their host twins"""
    return {
        "imports": FunctionList([replace(add_function, name="sum"), replace(fetch_function, name="download")]),
        "exports": FunctionList([add_function, fetch_function]),
        "types": TypeMap.from_types([]),
    }


@pytest.fixture
def sample_ir():
    return IRLoader((SAMPLES / "plugin.json").read_text()).load()
