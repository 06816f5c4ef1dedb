from pathlib import Path

import pytest

from keycheck.errors import ConfigurationError, DartSyntaxError
from keycheck.extractors import LexicalExtractor, StructuralExtractor, build_extractor
from keycheck.extractors.dart_lexer import decode_escapes, match_brackets, tokenize
from keycheck.model import SourceFile

LOGIN_SCREEN = """import 'package:flutter/material.dart';

class KeyConstants {
  static const String loginButton = 'login_button';
}

final formKey = GlobalKey<FormState>(debugLabel: 'login_form');

class LoginScreen extends StatelessWidget {
  @override
  Widget build(BuildContext context) {
    return Column(
      children: [
        ElevatedButton(key: const Key('submit_button'), onPressed: null, child: Text('Go')),
        TextField(key: ValueKey<String>('email_field')),
        TextButton(key: Key(KeyConstants.loginButton), onPressed: null, child: Text('Login')),
        Semantics(
          identifier: 'profile_header',
          child: Text('Profile'),
        ),
        Card(key: AppKey('fallback_card')),
        Container(key: UniqueKey()),
        Text('dynamic', key: Key('user_$userId')),
      ],
    );
  }
}
"""

LOGIN_TEST = """void main() {
  testWidgets('login', (tester) async {
    await tester.tap(find.byKey(const Key('login_button')));
    expect(find.byValueKey('email_field'), findsOneWidget);
    expect(find.bySemanticsLabel('profile_header'), findsOneWidget);
  });
}
"""


def _source_file(tmp_path: Path, name: str, content: str) -> SourceFile:
    path = tmp_path / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return SourceFile(
        path=name,
        absolute_path=str(path),
        size=len(content.encode("utf-8")),
        content_hash=None,
        mtime_ns=0,
    )


def _column(content: str, line: int, needle: str) -> int:
    return content.splitlines()[line - 1].index(needle) + 1


def _summary(fragments) -> set[tuple[str, str, int, int, frozenset[str]]]:
    return {
        (
            fragment.key,
            fragment.detector,
            fragment.location.line,
            fragment.location.column,
            fragment.tags,
        )
        for fragment in fragments
    }


def test_kc_ext_001_structural_detects_every_key_family(tmp_path: Path) -> None:
    source_file = _source_file(tmp_path, "lib/login.dart", LOGIN_SCREEN)

    result = StructuralExtractor().extract_file(source_file)

    assert _summary(result.fragments) == {
        ("login_form", "global_key", 7, _column(LOGIN_SCREEN, 7, "GlobalKey"), frozenset({"global"})),
        ("submit_button", "literal_key", 14, _column(LOGIN_SCREEN, 14, "Key("), frozenset({"const"})),
        ("email_field", "typed_key", 15, _column(LOGIN_SCREEN, 15, "ValueKey"), frozenset({"typed"})),
        ("login_button", "constant_key", 16, _column(LOGIN_SCREEN, 16, "Key("), frozenset({"constant"})),
        (
            "profile_header",
            "semantics_label",
            17,
            _column(LOGIN_SCREEN, 17, "Semantics"),
            frozenset({"semantic", "accessibility"}),
        ),
        (
            "fallback_card",
            "string_literal_fallback",
            21,
            _column(LOGIN_SCREEN, 21, "AppKey"),
            frozenset({"fallback"}),
        ),
    }
    assert all(fragment.reference is None for fragment in result.fragments)
    assert result.strategy == "structural"
    assert result.parse_error is None
    assert result.analysis.matched_keys == 6
    assert result.analysis.widget_count == 11
    assert result.analysis.widgets_with_keys == 6
    assert result.constants["loginButton"] == "login_button"
    assert result.constants["KeyConstants.loginButton"] == "login_button"


def test_kc_ext_002_lexical_agrees_with_structural_on_keys(tmp_path: Path) -> None:
    source_file = _source_file(tmp_path, "lib/login.dart", LOGIN_SCREEN)

    structural = StructuralExtractor().extract_file(source_file)
    lexical = LexicalExtractor().extract_file(source_file)

    assert lexical.strategy == "lexical"
    assert _summary(lexical.fragments) == _summary(structural.fragments)
    assert lexical.constants["KeyConstants.loginButton"] == "login_button"


def test_kc_ext_003_finders_are_reported_at_the_find_call(tmp_path: Path) -> None:
    source_file = _source_file(tmp_path, "test/login_test.dart", LOGIN_TEST)

    structural = StructuralExtractor().extract_file(source_file)
    lexical = LexicalExtractor().extract_file(source_file)

    expected = {
        ("login_button", "finder_key", 3, _column(LOGIN_TEST, 3, "find."), frozenset({"test", "e2e"})),
        ("email_field", "finder_key", 4, _column(LOGIN_TEST, 4, "find."), frozenset({"test", "e2e"})),
        (
            "profile_header",
            "semantics_label",
            5,
            _column(LOGIN_TEST, 5, "find."),
            frozenset({"semantic", "accessibility"}),
        ),
    }
    assert _summary(structural.fragments) == expected
    assert _summary(lexical.fragments) == expected


def test_kc_ext_004_commented_out_keys_are_ignored(tmp_path: Path) -> None:
    content = (
        "// final a = Key('line_comment');\n"
        "/* final b = ValueKey('block_comment'); */\n"
        "/*\n"
        "  final c = Key('multi_line_comment');\n"
        "*/\n"
        "final d = Key('real_key');\n"
    )
    source_file = _source_file(tmp_path, "lib/comments.dart", content)

    for extractor in (StructuralExtractor(), LexicalExtractor()):
        result = extractor.extract_file(source_file)
        assert [fragment.key for fragment in result.fragments] == ["real_key"]
        assert result.fragments[0].location.line == 6


def test_kc_ext_005_unresolved_reference_is_left_for_the_merge(tmp_path: Path) -> None:
    content = "final w = Container(key: Key(SharedKeys.checkout));\n"
    source_file = _source_file(tmp_path, "lib/checkout.dart", content)

    for extractor in (StructuralExtractor(), LexicalExtractor()):
        result = extractor.extract_file(source_file)
        assert len(result.fragments) == 1
        fragment = result.fragments[0]
        assert fragment.key == ""
        assert fragment.reference == "SharedKeys.checkout"
        assert fragment.detector == "constant_key"


def test_kc_ext_006_parse_failure_falls_back_to_lexical(tmp_path: Path) -> None:
    content = "final a = Key('good_key');\nfinal b = 'unterminated;\n"
    source_file = _source_file(tmp_path, "lib/broken.dart", content)

    with pytest.raises(DartSyntaxError):
        StructuralExtractor().extract_file(source_file)

    result = build_extractor().extract(source_file)

    assert result.strategy == "lexical"
    assert result.parse_error is not None
    assert "unterminated string literal" in result.parse_error
    assert [fragment.key for fragment in result.fragments] == ["good_key"]


def test_kc_ext_007_large_files_go_straight_to_lexical(tmp_path: Path) -> None:
    content = "final a = Key('big_file_key');\n"
    source_file = _source_file(tmp_path, "lib/big.dart", content)

    small_threshold = build_extractor(large_file_threshold=8)
    default_threshold = build_extractor()

    assert small_threshold.extract(source_file).strategy == "lexical"
    assert small_threshold.extract(source_file).parse_error is None
    assert default_threshold.extract(source_file).strategy == "structural"


def test_kc_ext_008_threshold_must_be_positive() -> None:
    with pytest.raises(ConfigurationError):
        build_extractor(large_file_threshold=0)


def test_kc_ext_009_lexer_decodes_strings_and_reports_positions() -> None:
    tokens = tokenize("Key('a\\'b') + r'raw\\n' + \"x$y\"")

    strings = [token for token in tokens if token.kind == "string"]
    assert [token.value for token in strings] == ["a'b", "raw\\n", None]
    assert (tokens[0].line, tokens[0].column) == (1, 1)
    assert decode_escapes("caf\\u00e9") == "café"
    assert decode_escapes("${name}") is None


def test_kc_ext_010_unbalanced_brackets_raise_syntax_error() -> None:
    with pytest.raises(DartSyntaxError) as exc_info:
        match_brackets(tokenize("Column(children: [Text('a')\n"))

    assert exc_info.value.line == 1


def test_kc_ext_011_comment_markers_inside_strings_do_not_hide_keys(tmp_path: Path) -> None:
    content = (
        "const accept = 'image/*';\n"
        "const docs = \"https://example.com/keys\";\n"
        "final label = '$count/*';\n"
        "final a = Key('upload_button'); // Key('old_key')\n"
        "final b = ValueKey('caption_field'); /* Key('inline_block') */ final c = Key('after_block');\n"
    )
    source_file = _source_file(tmp_path, "lib/upload.dart", content)

    for extractor in (StructuralExtractor(), LexicalExtractor()):
        result = extractor.extract_file(source_file)
        located = sorted((fragment.key, fragment.location.line) for fragment in result.fragments)
        assert located == [("after_block", 5), ("caption_field", 5), ("upload_button", 4)]
