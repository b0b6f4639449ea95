"""test_orchestrator.py — Tests for stack_deployer.orchestrator.

Run from shared_layer directory:
    PYTHONPATH=python python3 -m pytest test_orchestrator.py -v
"""

from __future__ import annotations

import os
import sys
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "python"))

from stack_deployer.config import DeployerSettings
from stack_deployer.errors import ArtifactNotFoundError, ConfigParseError
from stack_deployer.models import (
    CommitInfo,
    DeploymentRequest,
    Failure,
    NoChanges,
    StackInfo,
    Success,
    TemplateConfiguration,
)
from stack_deployer.orchestrator import DeploymentOrchestrator
from stack_deployer.reconciler import DeployReconciler, SubmittedOperation
from stack_deployer.tokens import generate_token

_COMMIT = CommitInfo(owner="acme", repository="orders", ref="abc123")


def _request(**overrides) -> DeploymentRequest:
    fields = dict(
        zip_location="s3://artifacts/build-42.zip",
        template_file_name="template.yml",
        stack_name="orders-svc",
        token="task-token-1",
        parameter_overrides={"Env": "prod"},
        environment_name="prod",
        commit_info=_COMMIT,
        delivery_id="msg-1",
    )
    fields.update(overrides)
    return DeploymentRequest(**fields)


class DeploymentOrchestratorTests(unittest.TestCase):
    def setUp(self):
        self.artifacts = MagicMock()
        self.artifacts.get_entry.return_value = "Resources: {}"
        self.reconciler = MagicMock()
        self.reconciler.reconcile.return_value = Success(outputs={"Url": "https://x"})
        self.state_reader = MagicMock()
        self.notifier = MagicMock()
        self.notifier.notify.return_value = True
        self.status_reporter = MagicMock()
        self.settings = DeployerSettings(region="us-east-1", deploy_timeout_seconds=840)

    def _orchestrator(self, **kwargs) -> DeploymentOrchestrator:
        kwargs.setdefault("clock", lambda: 1000.0)
        return DeploymentOrchestrator(
            artifact_store=self.artifacts,
            reconciler=self.reconciler,
            state_reader=self.state_reader,
            notifier=self.notifier,
            status_reporter=self.status_reporter,
            settings=self.settings,
            **kwargs,
        )

    def _reported_states(self):
        return [c.args[3] for c in self.status_reporter.report.call_args_list]

    def test_success_resumes_task_and_reports_statuses(self):
        request = _request()
        self._orchestrator().handle(request)

        context, deadline = self.reconciler.reconcile.call_args.args
        self.assertEqual(context.stack_name, "orders-svc")
        self.assertEqual(context.template_body, "Resources: {}")
        self.assertEqual(context.parameters, [("Env", "prod")])
        self.assertEqual(context.client_request_token, generate_token(request))
        self.assertEqual(deadline, 1840.0)

        self.artifacts.get_entry.assert_called_once_with("s3://artifacts/build-42.zip", "template.yml")
        self.notifier.notify.assert_called_once_with("task-token-1", Success(outputs={"Url": "https://x"}))
        self.assertEqual(self._reported_states(), ["pending", "success"])
        pending = self.status_reporter.report.call_args_list[0]
        self.assertEqual(pending.args[:3], ("orders-svc", "prod", _COMMIT))
        self.assertIn("orders-svc", pending.args[4])

    def test_config_parameters_are_merged_with_overrides(self):
        request = _request(template_configuration_file_name="config.json")
        self.artifacts.get_entry.side_effect = ["Resources: {}", '{"Parameters": {"Env": "dev", "Size": "m"}}']
        parser = MagicMock(
            return_value=TemplateConfiguration(
                parameters=[("Env", "dev"), ("Size", "m")],
                tags=[{"Key": "team", "Value": "orders"}],
                stack_policy_body='{"Statement": []}',
            )
        )

        self._orchestrator(config_parser=parser).handle(request)

        context = self.reconciler.reconcile.call_args.args[0]
        self.assertEqual(dict(context.parameters), {"Env": "prod", "Size": "m"})
        self.assertEqual(context.tags, [{"Key": "team", "Value": "orders"}])
        self.assertEqual(context.stack_policy_body, '{"Statement": []}')
        parser.assert_called_once_with('{"Parameters": {"Env": "dev", "Size": "m"}}')

    def test_no_changes_reads_current_outputs(self):
        self.reconciler.reconcile.return_value = NoChanges()
        self.state_reader.outputs.return_value = {"Url": "https://x"}

        self._orchestrator().handle(_request(role_arn="arn:aws:iam::1:role/deployer"))

        self.state_reader.outputs.assert_called_once_with("orders-svc", "arn:aws:iam::1:role/deployer")
        self.notifier.notify.assert_called_once_with("task-token-1", NoChanges(outputs={"Url": "https://x"}))
        self.assertEqual(self._reported_states(), ["pending", "success"])

    def test_stack_failure_reports_cause(self):
        self.reconciler.reconcile.return_value = Failure(cause="ROLLBACK_COMPLETE: bucket exists")

        self._orchestrator().handle(_request())

        self.notifier.notify.assert_called_once_with("task-token-1", Failure(cause="ROLLBACK_COMPLETE: bucket exists"))
        self.assertEqual(self._reported_states(), ["pending", "failure"])
        self.assertEqual(
            self.status_reporter.report.call_args_list[1].kwargs["detail"], "ROLLBACK_COMPLETE: bucket exists"
        )

    def test_missing_template_still_resumes_task(self):
        self.artifacts.get_entry.side_effect = ArtifactNotFoundError("Entry 'template.yml' not found")

        self._orchestrator().handle(_request())

        self.reconciler.reconcile.assert_not_called()
        self.notifier.notify.assert_called_once()
        outcome = self.notifier.notify.call_args.args[1]
        self.assertIsInstance(outcome, Failure)
        self.assertIn("template.yml", outcome.cause)
        self.assertEqual(self._reported_states(), ["failure"])

    def test_bad_config_still_resumes_task(self):
        request = _request(template_configuration_file_name="config.json")
        parser = MagicMock(side_effect=ConfigParseError("Template configuration is not valid JSON"))

        self._orchestrator(config_parser=parser).handle(request)

        self.notifier.notify.assert_called_once()
        self.assertIsInstance(self.notifier.notify.call_args.args[1], Failure)

    def test_unexpected_errors_become_failures(self):
        self.reconciler.reconcile.side_effect = RuntimeError()

        self._orchestrator().handle(_request())

        self.notifier.notify.assert_called_once_with("task-token-1", Failure(cause="RuntimeError"))

    def test_status_reporter_errors_do_not_change_outcome(self):
        self.status_reporter.report.side_effect = RuntimeError("github down")

        self._orchestrator().handle(_request())

        self.notifier.notify.assert_called_once_with("task-token-1", Success(outputs={"Url": "https://x"}))
        self.assertEqual(self.status_reporter.report.call_count, 2)

    def test_notifier_errors_are_contained(self):
        self.notifier.notify.side_effect = RuntimeError("sfn down")

        self._orchestrator().handle(_request())

        self.assertEqual(self._reported_states(), ["pending", "success"])

    def test_deadline_respects_lambda_remaining_time(self):
        orchestrator = self._orchestrator()
        self.assertEqual(orchestrator._deadline(None), 1840.0)
        self.assertEqual(orchestrator._deadline(90_000), 1060.0)
        self.assertEqual(orchestrator._deadline(10_000), 1000.0)


class EndToEndTests(unittest.TestCase):
    """Orchestrator wired to the real reconciler with a fake CloudFormation."""

    def test_first_deployment_creates_stack(self):
        outputs = {"Url": "https://orders.example.com"}
        state_reader = MagicMock()
        state_reader.exists.return_value = False
        state_reader.describe.return_value = StackInfo(
            stack_name="orders-svc", stack_id="arn:stack/orders-svc/1", status="CREATE_COMPLETE", outputs=outputs
        )
        control_plane = MagicMock()
        control_plane.create.return_value = SubmittedOperation("arn:stack/orders-svc/1", "create")
        artifacts = MagicMock()
        artifacts.get_entry.return_value = "Resources: {}"
        notifier = MagicMock()
        status_reporter = MagicMock()

        orchestrator = DeploymentOrchestrator(
            artifact_store=artifacts,
            reconciler=DeployReconciler(state_reader, control_plane, sleep=lambda s: None),
            state_reader=state_reader,
            notifier=notifier,
            status_reporter=status_reporter,
            settings=DeployerSettings(),
        )
        orchestrator.handle(_request())

        context = control_plane.create.call_args.args[0]
        self.assertEqual(context.parameters, [("Env", "prod")])
        control_plane.update.assert_not_called()
        notifier.notify.assert_called_once_with("task-token-1", Success(outputs=outputs))
        self.assertEqual([c.args[3] for c in status_reporter.report.call_args_list], ["pending", "success"])


if __name__ == "__main__":
    unittest.main()
