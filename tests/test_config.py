import pytest
from pydantic import ValidationError

from signalscope.config import BrowserConfig, ConfigError, load_config


class TestLoadConfig:
    def test_defaults(self):
        config = BrowserConfig()
        assert config.elasticsearch.url == "http://localhost:9200"
        assert config.tui.timeouts.point == 10.0
        assert config.tui.timeouts.aggregation == 30.0

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "absent.toml", environ={}, load_env_file=False)

    def test_reads_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            '[elasticsearch]\nurl = "https://es.example:9200/"\napi_key = "k"\n'
            "[tui]\npage_size = 250\n[tui.timeouts]\naggregation = 45\n"
        )
        config = load_config(path, environ={}, load_env_file=False)
        assert config.elasticsearch.url == "https://es.example:9200"
        assert config.elasticsearch.api_key == "k"
        assert config.tui.page_size == 250
        assert config.tui.timeouts.aggregation == 45
        assert config.tui.timeouts.point == 10.0

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[elasticsearch]\nurl = "http://file:9200"\n')
        env = {"SIGNALSCOPE_ES_URL": "http://env:9200", "SIGNALSCOPE_PAGE_SIZE": "20",
               "SIGNALSCOPE_ES_VERIFY_TLS": "false"}
        config = load_config(path, environ=env, load_env_file=False)
        assert config.elasticsearch.url == "http://env:9200"
        assert config.tui.page_size == 20
        assert config.elasticsearch.verify_tls is False

    def test_bad_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[elasticsearch\n")
        with pytest.raises(ConfigError):
            load_config(path, environ={}, load_env_file=False)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[tui]\npage_size = 0\n")
        with pytest.raises(ValidationError):
            load_config(path, environ={}, load_env_file=False)
