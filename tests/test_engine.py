"""
End-to-end pipeline tests with a fake command runner and patched IP probes.
"""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

from conftest import VALID_ENV, FakeRunner
from n8n_deploy.certificates import certificate_path
from n8n_deploy.engine import get_cli_version, main, main_execution, parse_arguments

URLS = ["https://probe-one.test"]
RUNNING = '\n'.join(
    '{"Service": "%s", "State": "running", "Health": ""}' % name
    for name in ('postgres', 'n8n', 'nginx')
)


def _ip_response(text="203.0.113.45"):
    response = Mock()
    response.text = text
    return response


def _host() -> FakeRunner:
    runner = FakeRunner(available=('docker',))
    runner.on('ps', '--all', stdout=RUNNING, prefix=False)
    return runner


def _existing_certificate(deploy_dir):
    chain = certificate_path(deploy_dir / 'letsencrypt', 'n8n.example.com')
    chain.parent.mkdir(parents=True)
    chain.write_text("cert\n", encoding="utf-8")


@pytest.fixture(autouse=True)
def _no_skip_env(monkeypatch):
    monkeypatch.delenv("SKIP_DEPENDENCY_CHECK", raising=False)


class TestParseArguments:
    def test_defaults(self):
        args = parse_arguments([])

        assert args.dir == Path.cwd()
        assert args.env_file == '.env'
        assert args.compose_template == 'docker-compose.yml.j2'
        assert args.cert_root is None
        assert args.skip_install is False
        assert args.dry_run is False
        assert args.log_level is None
        assert args.wait == 60

    def test_flags(self, tmp_path):
        args = parse_arguments([
            '-d', str(tmp_path), '-e', 'prod.env', '--skip-install',
            '--dry-run', '--log-level', 'debug', '--wait', '5',
        ])

        assert args.dir == tmp_path
        assert args.env_file == 'prod.env'
        assert args.skip_install is True
        assert args.dry_run is True
        assert args.log_level == 'DEBUG'
        assert args.wait == 5.0

    def test_rejects_unknown_level(self):
        with pytest.raises(SystemExit):
            parse_arguments(['--log-level', 'TRACE'])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            parse_arguments(['--version'])

        assert get_cli_version() in capsys.readouterr().out


class TestPreflight:
    def test_missing_env_file(self, tmp_path):
        result = main_execution(tmp_path)

        assert result['status'] == 'error'
        assert result['error'] == 'MissingFileError'

    def test_invalid_config_stops_before_any_side_effect(self, deploy_dir):
        (deploy_dir / '.env').write_text(VALID_ENV.replace('DOMAIN_NAME=example.com', 'DOMAIN_NAME='), encoding='utf-8')
        runner = _host()

        with patch("n8n_deploy.network.requests.get") as mock_get:
            result = main_execution(deploy_dir, runner=runner, probe_urls=URLS)

        assert result['status'] == 'error'
        assert result['error'] == 'ValidationError'
        assert 'DOMAIN_NAME' in result['message']
        mock_get.assert_not_called()
        assert runner.calls == []
        assert not (deploy_dir / 'docker-compose.yml').exists()

    def test_dry_run(self, deploy_dir):
        runner = _host()

        with patch("n8n_deploy.network.requests.get") as mock_get:
            result = main_execution(deploy_dir, dry_run=True, runner=runner, probe_urls=URLS)

        assert result['status'] == 'success'
        assert result['certificate_present'] is False
        assert (deploy_dir / 'docker-compose.yml').is_file()
        mock_get.assert_not_called()
        assert runner.calls == []


class TestFullRun:
    def test_existing_certificate(self, deploy_dir, capsys):
        _existing_certificate(deploy_dir)
        runner = _host()

        with patch("n8n_deploy.network.requests.get", return_value=_ip_response()):
            result = main_execution(deploy_dir, runner=runner, probe_urls=URLS)

        assert result['status'] == 'success'
        assert result['certificate_state'] == 'certificate_present'
        assert result['external_ip'] == '203.0.113.45'
        assert result['services'] == {'postgres': 'running', 'n8n': 'running', 'nginx': 'running'}
        assert not runner.called('certbot/certbot')
        assert 'EXTERNAL_IP=203.0.113.45' in (deploy_dir / '.env').read_text(encoding='utf-8')
        assert (deploy_dir / 'letsencrypt' / 'www').is_dir()
        assert 'https://n8n.example.com' in capsys.readouterr().out

    def test_issues_certificate_before_start(self, deploy_dir):
        runner = _host()

        with patch("n8n_deploy.network.requests.get", return_value=_ip_response()):
            result = main_execution(deploy_dir, runner=runner, probe_urls=URLS)

        assert result['status'] == 'success'
        assert result['certificate_state'] == 'certificate_issued'
        certbot = runner.calls.index(runner.called('certbot/certbot')[0])
        up = runner.calls.index(runner.called('up', '-d')[0])
        assert certbot < up

    def test_network_failure_stops_before_certificates(self, deploy_dir):
        runner = _host()

        with patch("n8n_deploy.network.requests.get", side_effect=requests.Timeout()):
            result = main_execution(deploy_dir, runner=runner, probe_urls=URLS)

        assert result['status'] == 'error'
        assert result['error'] == 'NetworkIdentityError'
        assert not runner.called('certbot/certbot')
        assert not runner.called('up', '-d')

    def test_certificate_failure_does_not_start_stack(self, deploy_dir):
        runner = _host()
        runner.on('docker', 'run', returncode=1)

        with patch("n8n_deploy.network.requests.get", return_value=_ip_response()):
            result = main_execution(deploy_dir, runner=runner, probe_urls=URLS)

        assert result['error'] == 'CertificateIssuanceError'
        assert not runner.called('up', '-d')

    def test_skip_install_env(self, deploy_dir, monkeypatch):
        _existing_certificate(deploy_dir)
        monkeypatch.setenv("SKIP_DEPENDENCY_CHECK", "1")
        runner = FakeRunner()
        runner.on('ps', '--all', stdout=RUNNING, prefix=False)

        with patch("n8n_deploy.network.requests.get", return_value=_ip_response()):
            result = main_execution(deploy_dir, runner=runner, probe_urls=URLS)

        assert result['status'] == 'success'
        assert not runner.called('apt-get')


class TestMain:
    def test_returns_one_on_error(self, tmp_path):
        assert main(['-d', str(tmp_path)]) == 1

    def test_returns_zero_on_dry_run(self, deploy_dir):
        assert main(['-d', str(deploy_dir), '--dry-run']) == 0


class TestCustomLocations:
    def test_env_file_is_passed_to_compose(self, deploy_dir):
        (deploy_dir / 'prod.env').write_text(VALID_ENV, encoding='utf-8')
        (deploy_dir / '.env').unlink()
        _existing_certificate(deploy_dir)
        runner = _host()

        with patch("n8n_deploy.network.requests.get", return_value=_ip_response()):
            result = main_execution(deploy_dir, env_file='prod.env', runner=runner, probe_urls=URLS)

        assert result['status'] == 'success'
        env_path = str(deploy_dir.resolve() / 'prod.env')
        stack_calls = [call for call in runner.called('docker', 'compose') if '-f' in call]
        assert stack_calls
        for call in stack_calls:
            assert call[call.index('--env-file') + 1] == env_path
        up = runner.called('up', '-d')[0]
        assert up.index('--env-file') < up.index('up')
        assert 'EXTERNAL_IP=203.0.113.45' in (deploy_dir / 'prod.env').read_text(encoding='utf-8')

    def test_cert_root_is_mounted_into_proxy(self, deploy_dir):
        certs = deploy_dir / 'certs'
        runner = _host()

        with patch("n8n_deploy.network.requests.get", return_value=_ip_response()):
            result = main_execution(deploy_dir, cert_root=certs, runner=runner, probe_urls=URLS)

        assert result['status'] == 'success'
        certbot = runner.called('certbot/certbot')[0]
        certbot_volume = certbot[certbot.index('-v') + 1]
        source = certbot_volume.split(':/etc/letsencrypt')[0]
        assert source == str(certs.resolve())

        compose = (deploy_dir / 'docker-compose.yml').read_text(encoding='utf-8')
        assert f'- "{source}:/etc/letsencrypt:ro"' in compose
        assert './letsencrypt' not in compose
        assert (certs / 'www').is_dir()

    def test_dry_run_renders_cert_root(self, deploy_dir):
        certs = deploy_dir / 'certs'

        result = main_execution(deploy_dir, cert_root=certs, dry_run=True, runner=_host(), probe_urls=URLS)

        assert result['status'] == 'success'
        compose = (deploy_dir / 'docker-compose.yml').read_text(encoding='utf-8')
        assert f'- "{certs.resolve()}:/etc/letsencrypt:ro"' in compose
