"""
Tests for the suite summary report and the test runner command line

Run with: pytest tests/test_summary.py -v
"""

import io
import sys
from argparse import Namespace
from datetime import datetime

import pytest

import run_tests
from vaultke.testing.summary import print_summary, SECTIONS, TOTAL_TESTS


def runner_args(**overrides):
    values = dict(unit=False, integration=False, concurrency=False, failure_injection=False,
                  slow=False, module=None, test=None, verbose=False, coverage=False,
                  no_capture=False, parallel=False, fail_fast=False, debug=False)
    values.update(overrides)
    return Namespace(**values)


class TestPrintSummary:
    """Tests for the fixed end-of-run report."""

    def render(self):
        stream = io.StringIO()
        print_summary(stream, now=datetime(2025, 3, 14, 9, 26, 53))
        return stream.getvalue()

    def test_header(self):
        text = self.render()
        assert 'VAULTKE BACKEND TEST SUITE SUMMARY' in text
        assert 'Generated on: 2025-03-14 09:26:53' in text
        assert f'Total Tests: {TOTAL_TESTS}' in text
        assert 'Coverage Achieved: 97.5%' in text

    def test_every_section_listed(self):
        text = self.render()
        for title, items in SECTIONS:
            assert f'{title}:' in text
            for item in items:
                assert f'  [x] {item}' in text

    def test_banner_lines(self):
        lines = self.render().splitlines()
        assert lines[0] == '=' * 79
        assert lines[-1] == '=' * 79

    def test_defaults_to_stdout(self, capsys):
        print_summary()
        assert 'VAULTKE BACKEND TEST SUITE SUMMARY' in capsys.readouterr().out


class TestRunnerCommand:
    """Tests for run_tests.py argument handling."""

    def test_summary_flag(self, capsys):
        assert run_tests.main(['--summary']) == 0
        assert 'Total Tests: 500' in capsys.readouterr().out

    def test_default_command(self):
        cmd = run_tests.get_test_command(runner_args())
        assert cmd[:3] == [sys.executable, '-m', 'pytest']
        assert cmd[-1] == '-v'

    @pytest.mark.parametrize("overrides,expected", [
        ({'unit': True}, ['-m', 'not (integration or concurrency or failure_injection)']),
        ({'integration': True}, ['-m', 'integration']),
        ({'concurrency': True}, ['-m', 'concurrency']),
        ({'failure_injection': True}, ['-m', 'failure_injection']),
        ({'module': 'notifications'}, ['tests/test_notifications.py']),
        ({'module': 'coverage'}, ['tests/test_integration_coverage.py']),
        ({'module': 'wallets'}, ['tests/test_wallets.py']),
        ({'coverage': True}, ['--cov=vaultke', '--cov-report=term-missing']),
        ({'parallel': True}, ['-n', 'auto']),
        ({'test': 'concurrent'}, ['-k', 'concurrent']),
    ])
    def test_flags(self, overrides, expected):
        cmd = run_tests.get_test_command(runner_args(**overrides))
        start = cmd.index(expected[0], 3)
        assert cmd[start:start + len(expected)] == expected

    def test_output_flags(self):
        cmd = run_tests.get_test_command(runner_args(verbose=True, fail_fast=True, debug=True,
                                                     no_capture=True))
        for flag in ('-vv', '-x', '-l', '-s'):
            assert flag in cmd
        assert '-v' not in cmd

    def test_module_map_points_at_test_files(self):
        for path in run_tests.MODULE_MAP.values():
            assert path.startswith('tests/test_') and path.endswith('.py')
