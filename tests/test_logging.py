from avion_ai.logging import redact


def test_redacts_sensitive_keys_but_not_token_counts():
    out = redact({"groq_api_key": "abc", "auth_token": "t", "max_tokens": 500, "model": "m"}, secrets=[])
    assert out == {"groq_api_key": "[REDACTED]", "auth_token": "[REDACTED]", "max_tokens": 500, "model": "m"}


def test_redacts_bearer_and_groq_keys_inside_strings():
    text = "headers Authorization: Bearer abcdef123456 key=gsk_ABCDEFGH12345678"
    out = redact(text, secrets=[])
    assert "abcdef123456" not in out
    assert "gsk_ABCDEFGH12345678" not in out


def test_redacts_configured_secrets_in_nested_values():
    out = redact({"error": ["upstream said hunter2-secret"]}, secrets=["hunter2-secret"])
    assert out == {"error": ["upstream said [REDACTED]"]}
