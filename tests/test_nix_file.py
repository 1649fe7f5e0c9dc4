from __future__ import annotations

from pathlib import Path

import pytest

from nixpkgs_vet.exceptions import VetError
from nixpkgs_vet.location import LineIndex
from nixpkgs_vet.nix_file import NixFile, NixFileStore, ResolvedKind, TokenKind, tokenize
from tests.nixpkgs_helpers import write


def _kinds(text: str) -> list[tuple[TokenKind, str]]:
    return [(token.kind, token.text) for token in tokenize(text) if not token.is_trivia]


def test_line_index_round_trip() -> None:
    index = LineIndex("ab\ncd\n\nef")
    assert index.line(0) == 1
    assert index.line(2) == 1
    assert index.line(3) == 2
    assert index.line(7) == 4
    assert index.offset(2, 2) == 4
    assert index.column(4) == 2
    assert index.offset(1, 1) == 0


def test_tokenize_paths_and_search_paths() -> None:
    assert _kinds("import ./foo.nix <nixpkgs> ~/x /abs a/b") == [
        (TokenKind.IDENT, "import"),
        (TokenKind.PATH, "./foo.nix"),
        (TokenKind.SEARCH_PATH, "<nixpkgs>"),
        (TokenKind.PATH, "~/x"),
        (TokenKind.PATH, "/abs"),
        (TokenKind.PATH, "a/b"),
    ]


def test_tokenize_interpolated_path() -> None:
    (token,) = [token for token in tokenize("./foo/${bar}.nix") if not token.is_trivia]
    assert token.kind is TokenKind.PATH
    assert token.interpolated
    assert token.text == "./foo/${bar}.nix"


def test_tokenize_strings_keep_interpolation_inside() -> None:
    kinds = _kinds('"a ${toString ./x} \\" b" + \'\'\n  c ${d} \'\'${e}\n\'\' // { }')
    assert kinds[0][0] is TokenKind.STRING
    assert kinds[1] == (TokenKind.PUNCT, "+")
    assert kinds[2][0] is TokenKind.STRING
    assert kinds[3] == (TokenKind.PUNCT, "//")
    assert len(kinds) == 6


def test_tokenize_comments_and_uris() -> None:
    assert _kinds("# comment\n/* block */ https://example.org/x") == [
        (TokenKind.URI, "https://example.org/x"),
    ]


def test_unbalanced_file_is_an_error(tmp_path: Path) -> None:
    path = write(tmp_path, "bad.nix", "{ a = 1; }}\n")
    with pytest.raises(VetError):
        NixFileStore().get(path)


def test_store_caches_by_absolute_path(tmp_path: Path) -> None:
    path = write(tmp_path, "a.nix", "{ }\n")
    store = NixFileStore()
    assert store.get(path) is store.get(tmp_path / "." / "a.nix")
    assert len(store) == 1


def test_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(VetError, match="Could not read Nix file"):
        NixFileStore().get(tmp_path / "missing.nix")


def test_with_extents_stop_at_expression_end() -> None:
    nix_file = NixFile(Path("/x.nix"), "{ lib }: { m = with lib.maintainers; [ a b ]; c = 1; }")
    ((start, end),) = nix_file.with_extents()
    assert [token.text for token in nix_file.significant[start:end]] == [
        "with", "lib", ".", "maintainers", ";", "[", "a", "b", "]",
    ]


def test_single_string_file() -> None:
    assert NixFile(Path("/x.nix"), '# doc\n"just a string"\n').is_single_string()
    assert not NixFile(Path("/x.nix"), '"a" + "b"').is_single_string()


ALL_PACKAGES = """\
{ callPackage, pythonPackages, bar }:
{
  empty = callPackage ../by-name/em/empty/package.nix { };

  custom = pkgs.callPackage ../by-name/cu/custom/package.nix {
    enableFoo = true;
  };

  indirect = bar;

  extra = callPackage ../by-name/ex/extra/package.nix { } { };

  nonPath = callPackage bar { };
}
"""


@pytest.fixture
def all_packages(tmp_path: Path) -> NixFile:
    for name in ("empty", "custom", "extra"):
        write(tmp_path, f"pkgs/by-name/{name[:2]}/{name}/package.nix", "{ }: { }\n")
    path = write(tmp_path, "pkgs/top-level/all-packages.nix", ALL_PACKAGES)
    return NixFileStore().get(path)


def test_call_package_with_empty_argument(tmp_path: Path, all_packages: NixFile) -> None:
    info, definition = all_packages.call_package_argument_info_at(3, 3, tmp_path)
    assert info is not None
    assert info.relative_path == "pkgs/by-name/em/empty/package.nix"
    assert info.empty_arg
    assert definition == "empty = callPackage ../by-name/em/empty/package.nix { };"


def test_call_package_with_custom_argument(tmp_path: Path, all_packages: NixFile) -> None:
    info, definition = all_packages.call_package_argument_info_at(5, 3, tmp_path)
    assert info is not None
    assert info.relative_path == "pkgs/by-name/cu/custom/package.nix"
    assert not info.empty_arg
    assert definition.endswith("enableFoo = true;\n  };")


def test_non_call_package_definitions(tmp_path: Path, all_packages: NixFile) -> None:
    assert all_packages.call_package_argument_info_at(9, 3, tmp_path)[0] is None
    assert all_packages.call_package_argument_info_at(11, 3, tmp_path)[0] is None


def test_call_package_without_path_argument(tmp_path: Path, all_packages: NixFile) -> None:
    info, _definition = all_packages.call_package_argument_info_at(13, 3, tmp_path)
    assert info is not None
    assert info.relative_path is None
    assert info.empty_arg


@pytest.mark.parametrize(
    ("arguments", "relative_path", "empty_arg"),
    [
        ("../by-name/fo/foo/package.nix pkgs.fooArgs", "pkgs/by-name/fo/foo/package.nix", False),
        ("../by-name/fo/foo/package.nix ({ a = 1; } // extra)", "pkgs/by-name/fo/foo/package.nix", False),
        ("../by-name/fo/foo/package.nix (lib.optionalAttrs x { })", "pkgs/by-name/fo/foo/package.nix", False),
        ("../by-name/fo/foo/package.nix rec { }", "pkgs/by-name/fo/foo/package.nix", True),
        ("../by-name/fo/foo/package.nix args.foo or { }", "pkgs/by-name/fo/foo/package.nix", False),
        ('../by-name/fo/foo/package.nix "string"', "pkgs/by-name/fo/foo/package.nix", False),
        ("(import ./foo.nix) { }", None, True),
        ("../by-name/fo/foo/package.nix ({ })", "pkgs/by-name/fo/foo/package.nix", False),
        ("../by-name/fo/foo/package.nix (if x then { } else { })", "pkgs/by-name/fo/foo/package.nix", False),
    ],
)
def test_call_package_arguments_are_whole_expressions(
    tmp_path: Path, arguments: str, relative_path: str | None, empty_arg: bool
) -> None:
    write(tmp_path, "pkgs/by-name/fo/foo/package.nix", "{ }: { }\n")
    path = write(tmp_path, "pkgs/top-level/all-packages.nix", f"{{\n  foo = callPackage {arguments};\n}}\n")
    info, _definition = NixFileStore().get(path).call_package_argument_info_at(2, 3, tmp_path)
    assert info is not None
    assert info.relative_path == relative_path
    assert info.empty_arg is empty_arg


@pytest.mark.parametrize(
    "arguments",
    [
        "../by-name/fo/foo/package.nix",
        "../by-name/fo/foo/package.nix { } // { }",
        "../by-name/fo/foo/package.nix { } { }",
        "../by-name/fo/foo/package.nix pkgs.",
    ],
)
def test_other_call_package_shapes_are_not_recognized(tmp_path: Path, arguments: str) -> None:
    write(tmp_path, "pkgs/by-name/fo/foo/package.nix", "{ }: { }\n")
    path = write(tmp_path, "pkgs/top-level/all-packages.nix", f"{{\n  foo = callPackage {arguments};\n}}\n")
    info, _definition = NixFileStore().get(path).call_package_argument_info_at(2, 3, tmp_path)
    assert info is None


@pytest.mark.parametrize(
    ("text", "count"),
    [
        ('""', 2),
        ('"plain"', 3),
        ('"a ${b} c"', 7),
        ('"${b}"', 5),
        ("''\n  a ${b.c}\n''", 9),
        ("./foo/${bar}.nix", 5),
        ("./foo/bar.nix", 1),
        ("{ a = 1; }", 6),
    ],
)
def test_token_count_splits_strings_and_interpolations(text: str, count: int) -> None:
    assert NixFile(Path("/x.nix"), text).token_count() == count


def test_location_without_binding_is_an_error(tmp_path: Path, all_packages: NixFile) -> None:
    with pytest.raises(VetError):
        all_packages.call_package_argument_info_at(3, 4, tmp_path)


@pytest.mark.parametrize(
    ("expression", "kind"),
    [
        ("./a.nix", ResolvedKind.WITHIN),
        ("./missing.nix", ResolvedKind.UNRESOLVABLE),
        ("../outside.nix", ResolvedKind.OUTSIDE),
        ("/etc/passwd", ResolvedKind.ABSOLUTE),
        ("~/foo", ResolvedKind.HOME_RELATIVE),
        ("<nixpkgs>", ResolvedKind.SEARCH_PATH),
        ("./${name}.nix", ResolvedKind.INTERPOLATED),
    ],
)
def test_static_resolve_path(tmp_path: Path, expression: str, kind: ResolvedKind) -> None:
    write(tmp_path, "outside.nix", "{ }\n")
    package_dir = tmp_path / "package"
    write(package_dir, "a.nix", "{ }\n")
    path = write(package_dir, "default.nix", f"{{ name }}: import {expression}\n")
    nix_file = NixFileStore().get(path)
    (token,) = nix_file.path_tokens()
    resolved = nix_file.static_resolve_path(token, package_dir)
    assert resolved.kind is kind
    if kind is ResolvedKind.WITHIN:
        assert resolved.relative == "a.nix"
