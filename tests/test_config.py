"""
Tests for client configuration.
"""

import configparser

import pytest

from taxi_client.config import ENV_MAPPINGS, ClientConfiguration, is_valid_ip
from taxi_shared.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for env_var in ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / 'client.conf'


def write_config(path, text):
    path.write_text(text)
    return str(path)


class TestDefaults:

    def test_default_values(self, config_file):
        config = ClientConfiguration(str(config_file))

        assert config.get_api_base_url() == 'http://localhost:8000/api/'
        assert config.get_timeout() == 10.0
        assert config.is_debug_mode() is False
        assert config.get_log_level() == 'INFO'
        assert config.get_log_format() == 'standard'
        assert config.get_log_file() is None

    def test_missing_file_is_not_created(self, config_file):
        ClientConfiguration(str(config_file))

        assert not config_file.exists()


class TestSources:

    def test_file_values(self, config_file):
        path = write_config(config_file, """
[api]
host = 192.168.1.50
port = 9000
timeout_ms = 2500

[client]
debug_mode = true
""")
        config = ClientConfiguration(path)

        assert config.get_api_base_url() == 'http://192.168.1.50:9000/api/'
        assert config.get_timeout() == 2.5
        assert config.get_log_level() == 'DEBUG'

    def test_environment_overrides_file(self, config_file, monkeypatch):
        path = write_config(config_file, "[api]\nhost = 192.168.1.50\n")
        monkeypatch.setenv('TAXI_MANAGER_API_HOST', '10.0.0.9')
        monkeypatch.setenv('TAXI_MANAGER_TIMEOUT_MS', '500')

        config = ClientConfiguration(path)

        assert config.get_api_host() == '10.0.0.9'
        assert config.get_timeout() == 0.5

    def test_override_wins(self, config_file, monkeypatch):
        monkeypatch.setenv('TAXI_MANAGER_API_URL', 'http://env.example/api/')
        config = ClientConfiguration(str(config_file))

        config.set_override('api.url', 'https://taxis.example.com/api')

        assert config.get_api_base_url() == 'https://taxis.example.com/api/'

    def test_invalid_url_scheme(self, config_file):
        config = ClientConfiguration(str(config_file))
        config.set_override('api.url', 'ftp://taxis.example.com/')

        with pytest.raises(ConfigurationError):
            config.get_api_base_url()

    @pytest.mark.parametrize('port', ['0', '70000', 'http'])
    def test_invalid_port(self, config_file, port):
        config = ClientConfiguration(write_config(config_file, f"[api]\nport = {port}\n"))

        with pytest.raises(ConfigurationError) as exc_info:
            config.get_api_port()

        assert exc_info.value.context['config_key'] == 'api.port'

    def test_invalid_timeout(self, config_file):
        config = ClientConfiguration(write_config(config_file, "[api]\ntimeout_ms = 0\n"))

        with pytest.raises(ConfigurationError):
            config.get_timeout()


class TestSetApiHost:

    @pytest.mark.parametrize('ip', ['192.168.1.100', '10.0.0.1', '0.0.0.0', '255.255.255.255'])
    def test_valid_ip(self, ip):
        assert is_valid_ip(ip)

    @pytest.mark.parametrize('ip', ['', '192.168.1', '256.1.1.1', '192.168.1.1.1', 'abc.def.ghi.jkl', '1.2.3.-4'])
    def test_invalid_ip(self, ip):
        assert not is_valid_ip(ip)

    def test_set_host_persists(self, config_file):
        config = ClientConfiguration(str(config_file))

        assert config.set_api_host('192.168.1.100') is True

        assert config.get_api_base_url() == 'http://192.168.1.100:8000/api/'
        parser = configparser.ConfigParser()
        parser.read(config_file)
        assert parser['api']['host'] == '192.168.1.100'
        assert ClientConfiguration(str(config_file)).get_api_host() == '192.168.1.100'

    def test_same_host_is_unchanged(self, config_file):
        config = ClientConfiguration(write_config(config_file, "[api]\nhost = 192.168.1.100\n"))

        assert config.set_api_host('192.168.1.100') is False

    def test_set_host_drops_explicit_url(self, config_file):
        config = ClientConfiguration(write_config(config_file, "[api]\nurl = http://old.example/api/\n"))

        config.set_api_host('10.1.1.1')

        assert config.get_api_base_url() == 'http://10.1.1.1:8000/api/'
        parser = configparser.ConfigParser()
        parser.read(config_file)
        assert 'url' not in parser['api']

    def test_invalid_host_is_rejected(self, config_file):
        config = ClientConfiguration(str(config_file))

        with pytest.raises(ConfigurationError) as exc_info:
            config.set_api_host('192.168.1')

        assert 'xxx.xxx.xxx.xxx' in exc_info.value.user_message
        assert not config_file.exists()

    def test_to_dict(self, config_file):
        info = ClientConfiguration(str(config_file)).to_dict()

        assert info['api_base_url'] == 'http://localhost:8000/api/'
        assert info['config_file'] == str(config_file)
        assert info['timeout_seconds'] == 10.0
