from driftwood.providers import unpacker

PACKED = (
    "<script>eval(function(p,a,c,k,e,d){while(c--)if(k[c])p=p.replace(new RegExp("
    "'\\\\b'+c.toString(a)+'\\\\b','g'),k[c]);return p}"
    "('0 1={2:\"3\"};',4,4,'var|player|file|https://packed.example/v/master.m3u8'.split('|'),0,{}))"
    "</script>"
)


def test_detect():
    assert unpacker.detect(PACKED)
    assert not unpacker.detect("<script>var x = 1;</script>")


def test_unpack_golden():
    assert unpacker.unpack(PACKED) == 'var player={file:"https://packed.example/v/master.m3u8"};'


def test_unpack_returns_plain_text_unchanged():
    text = "nothing packed here"
    assert unpacker.unpack(text) == text


def test_multi_digit_tokens_do_not_collide():
    # token "10" must not be rewritten through token "1"
    words = [""] * 11
    words[1] = "one"
    words[10] = "ten"
    assert unpacker.unpack_payload("10 1 10", 10, 11, words) == "ten one ten"


def test_tokens_above_base36_use_uppercase():
    words = [""] * 37
    words[36] = "big"
    words[10] = "small"
    assert unpacker.unpack_payload("A a", 62, 37, words) == "big small"


def test_empty_words_leave_token_in_place():
    assert unpacker.unpack_payload("0 1", 10, 2, ["", "x"]) == "0 x"
