"""stack_deployer — CloudFormation stack deployment for CI pipelines.

Provides:
    - Deployment request translation from SQS messages
    - Template/config retrieval from zipped S3 artifacts
    - Create-or-update reconciliation against CloudFormation
    - Step Functions task-token resumption (exactly once per request)
    - GitHub commit-status mirroring
"""

__version__ = "1.0.0"
