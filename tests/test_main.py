import json

import pytest

from quotabar.__main__ import _emit, _parse_listen_address, _seed_api_keys
from quotabar.config import Config
from quotabar.credentials import CredentialStore
from quotabar.errors import CredentialNotFound
from quotabar.models import AuthRequired, CredentialKind
from quotabar.registry import build_registry


class TestParseListenAddress:
    def test_port_only(self) -> "None":
        assert _parse_listen_address(":9186") == ("0.0.0.0", 9186)

    def test_host_and_port(self) -> "None":
        assert _parse_listen_address("127.0.0.1:9186") == ("127.0.0.1", 9186)


class TestSeedApiKeys:
    def test_known_providers_only(self, credentials: "CredentialStore") -> "None":
        config = Config(api_keys={"zai": "zai-key", "bogus": "x"})
        _seed_api_keys(config, build_registry(), credentials)

        assert credentials.get("zai", CredentialKind.API_KEY).secret == "zai-key"
        with pytest.raises(CredentialNotFound):
            credentials.get("bogus", CredentialKind.API_KEY)


def test_emit_writes_one_json_line(capsys: "pytest.CaptureFixture[str]") -> "None":
    _emit({"cursor": AuthRequired("cursor", "session expired")})
    out = capsys.readouterr().out
    assert out.count("\n") == 1
    line = json.loads(out)
    assert line["cursor"]["kind"] == "auth_required"
    assert line["cursor"]["reason"] == "session expired"
