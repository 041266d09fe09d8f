import json

import pytest

from tutor_dashboard.typing_result import (
    AdvancedTyping, BasicTyping, LegacyTyping, ThemeLevel, average_level, decode_typing_result,
    encode_typing_result, format_typing_result, level_value, parse_accuracy, parse_char_count,
)


def test_decode_basic_grade():
    raw = '{"grade":"10級","data":{"basicData":{"charCount":"120","accuracy":"95"}}}'
    result = decode_typing_result(raw)
    assert result == BasicTyping("10級", "120", "95")
    assert result.char_count == 120
    assert result.accuracy == 95.0


def test_decode_advanced_grade_with_level_ranks():
    raw = json.dumps({
        "grade": "9級",
        "data": {"advancedData": [{"theme": "しりとり2文字", "level": "B+"}]},
    }, ensure_ascii=False)
    result = decode_typing_result(raw)
    assert result == AdvancedTyping("9級", (ThemeLevel("しりとり2文字", "B+"),))
    assert level_value("B+") == 12
    assert result.average_level == 12


def test_decode_advanced_accepts_evaluation_key():
    raw = '{"grade":"7級","data":{"advancedData":[{"theme":"動物","evaluation":"A"}]}}'
    assert decode_typing_result(raw).themes == (ThemeLevel("動物", "A"),)


@pytest.mark.parametrize("raw", [
    None, "", "   ", '{"data":{}}', "{broken", "[1, 2]",
    "[" * 100000,
    '{"grade":"9級","data":' + "[" * 100000,
])
def test_decode_yields_nothing_for_empty_or_malformed(raw):
    assert decode_typing_result(raw) is None


def test_decode_free_text_is_legacy():
    assert decode_typing_result("ホームポジション練習") == LegacyTyping("ホームポジション練習")
    assert decode_typing_result("42") == LegacyTyping("42")


def test_level_value_unknown_is_zero():
    assert level_value("E-") == 1
    assert level_value("Fast") == 18
    assert level_value("Z") == 0
    assert level_value(None) == 0


def test_average_level_rounds_half_up_and_skips_unknown():
    themes = [ThemeLevel("a", "E"), ThemeLevel("b", "E+"), ThemeLevel("c", "?")]
    assert average_level(themes) == 3  # (2 + 3) / 2 = 2.5
    assert average_level([ThemeLevel("a", "")]) == 0


def test_parse_numbers_from_display_text():
    assert parse_char_count("120文字") == 120
    assert parse_char_count("") is None
    assert parse_accuracy("95.5%") == 95.5
    assert parse_accuracy("-") is None


def test_encode_basic_and_advanced():
    basic = json.loads(encode_typing_result("11級", char_count=" 80 ", accuracy="90"))
    assert basic == {
        "grade": "11級",
        "data": {"basicData": {"charCount": "80", "accuracy": "90"}, "advancedData": []},
    }
    advanced = encode_typing_result("8級", levels=[{"theme": "しりとり4文字", "level": "C"}])
    assert decode_typing_result(advanced) == AdvancedTyping("8級", (ThemeLevel("しりとり4文字", "C"),))
    assert encode_typing_result("") == ""


def test_format_typing_result():
    assert format_typing_result(None) == "記録なし"
    assert format_typing_result(LegacyTyping("自由記述")) == "自由記述"
    assert format_typing_result(BasicTyping("10級", "120", "95%")) == "10級: 120文字, 95%"
    assert format_typing_result(BasicTyping("10級", "120文字", "")) == "10級: 120文字"
    assert format_typing_result(AdvancedTyping("9級", (ThemeLevel("しりとり2文字", "B"),))) == "9級: しりとり2文字: B"
    assert format_typing_result(AdvancedTyping("9級")) == "9級: 記録なし"
