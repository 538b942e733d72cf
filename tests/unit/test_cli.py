"""
Unit tests for the command line interface.
"""

import json
import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from flowrunner.cli import build_parser, main


@pytest.fixture
def flow_file(tmp_path):
    document = {
        'id': 'cli-flow',
        'name': 'CLI flow',
        'environmentId': 'env-local',
        'nodes': [
            {'id': 's', 'type': 'start'},
            {'id': 'set', 'type': 'setVar', 'data': {'key': 'who', 'valueTemplate': '{{user}}'}},
            {'id': 'log', 'type': 'log', 'data': {'messageTemplate': 'hi {{who}}'}},
        ],
        'edges': [
            {'id': 'e1', 'source': 's', 'target': 'set'},
            {'id': 'e2', 'source': 'set', 'target': 'log'},
        ],
    }
    path = tmp_path / 'flow.json'
    path.write_text(json.dumps(document))
    return path


@pytest.fixture
def env_file(tmp_path):
    path = tmp_path / 'envs.json'
    path.write_text(json.dumps({'id': 'env-local', 'name': 'Local',
                                'variables': [{'key': 'user', 'value': 'carol'}]}))
    return path


class TestCli:
    """Tests for flowrunner run."""

    def test_parser_requires_command(self):
        """Test the run sub-command is required."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_successful_run(self, flow_file, env_file, capsys):
        """Test a flow runs and prints its report."""
        code = main(['run', str(flow_file), '--environments', str(env_file), '--log-level', 'WARNING'])

        out = capsys.readouterr().out
        assert code == 0
        assert 'Node log log completed' in out
        assert 'who = carol' in out
        assert 'Status: success' in out

    def test_json_output(self, flow_file, env_file, capsys):
        """Test --json prints the run state."""
        code = main(['run', str(flow_file), '--environments', str(env_file),
                     '--log-level', 'WARNING', '--json'])

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data['status'] == 'success'
        assert data['context']['flowVars']['who'] == 'carol'

    def test_failing_run_exit_code(self, flow_file, capsys):
        """Test a run that errors exits with 1."""
        code = main(['run', str(flow_file), '--log-level', 'WARNING'])

        assert code == 1
        assert 'Environment env-local not found' in capsys.readouterr().out

    def test_invalid_document(self, tmp_path, capsys):
        """Test an invalid flow document is reported."""
        path = tmp_path / 'bad.json'
        path.write_text(json.dumps({'id': 'x', 'nodes': [{'id': 'a', 'type': 'warp'}]}))

        code = main(['run', str(path), '--log-level', 'WARNING'])

        assert code == 1
        assert 'FLOW_CONFIGURATION_ERROR' in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        """Test a missing flow file is reported."""
        code = main(['run', str(tmp_path / 'nope.json'), '--log-level', 'WARNING'])

        assert code == 1
        assert 'Failed to load documents' in capsys.readouterr().err
