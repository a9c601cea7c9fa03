"""boto3-backed collaborators: CloudFormation, S3 and SSM Parameter Store.

Every boto3 ``ClientError`` is translated onto the engine's error taxonomy
here, so nothing above this module ever sees a botocore exception.
Throttling and connection failures become ``TransientProvisioningError``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import boto3
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from stackforge.backends.base import (
    ExportRecord,
    ParameterPathMissing,
    ParameterVersionMissing,
    StackDescription,
)
from stackforge.backends.status import is_placeholder
from stackforge.core.errors import (
    ProvisioningError,
    ProvisioningFailed,
    StackNotFound,
    TransientProvisioningError,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ServiceUnavailable",
        "InternalFailure",
        "RequestTimeout",
    }
)

_CONNECTION_ERRORS = (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)

_CHANGESET_PENDING = {"CREATE_PENDING", "CREATE_IN_PROGRESS"}
_NO_CHANGES_REASONS = ("didn't contain changes", "No updates are to be performed")


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def error_message(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Message", "")


def translate_client_error(exc: ClientError, context: str) -> ProvisioningError:
    """Map a boto3 ClientError onto ``ProvisioningError`` subclasses."""
    code = error_code(exc)
    message = error_message(exc)
    if code in TRANSIENT_ERROR_CODES:
        return TransientProvisioningError(f"{context}: {code}: {message}")
    if code == "ValidationError" and "does not exist" in message:
        return StackNotFound(f"{context}: {message}")
    return ProvisioningFailed(f"{context}: {code}: {message}")


def _call(context: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
    try:
        return fn(**kwargs)
    except ClientError as exc:
        raise translate_client_error(exc, context) from exc
    except _CONNECTION_ERRORS as exc:
        raise TransientProvisioningError(f"{context}: {exc}") from exc


def _stack_name_from_id(stack_id: str) -> str:
    """``arn:aws:cloudformation:...:stack/NAME/GUID`` -> ``NAME``."""
    if stack_id.startswith("arn:") and "/" in stack_id:
        return stack_id.split("/")[1]
    return stack_id


# ---------------------------------------------------------------------------
# CloudFormation
# ---------------------------------------------------------------------------


class CloudFormationProvisioner:
    """``StackProvisioner`` over the CloudFormation API.

    Parameters
    ----------
    client:
        A boto3 ``cloudformation`` client. Created from the default session
        when omitted.
    sleep:
        Used while waiting for a changeset to finish computing.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        region: str | None = None,
        changeset_poll_seconds: float = 2.0,
        changeset_max_polls: int = 60,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cfn = client or boto3.client("cloudformation", region_name=region)
        self._poll_seconds = changeset_poll_seconds
        self._max_polls = changeset_max_polls
        self._sleep = sleep

    @staticmethod
    def _parameters(parameters: dict[str, str]) -> list[dict[str, str]]:
        return [
            {"ParameterKey": key, "ParameterValue": value}
            for key, value in sorted(parameters.items())
        ]

    @staticmethod
    def _tags(tags: dict[str, str] | None) -> list[dict[str, str]]:
        return [{"Key": key, "Value": value} for key, value in sorted((tags or {}).items())]

    def create_stack(
        self,
        name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: list[str],
        *,
        disable_rollback: bool = False,
        tags: dict[str, str] | None = None,
    ) -> None:
        _call(
            f"create {name}",
            self._cfn.create_stack,
            StackName=name,
            TemplateURL=template_url,
            Parameters=self._parameters(parameters),
            Capabilities=list(capabilities),
            DisableRollback=disable_rollback,
            Tags=self._tags(tags),
        )
        logger.info("Submitted create for %s", name)

    def update_stack(
        self,
        name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: list[str],
        *,
        tags: dict[str, str] | None = None,
    ) -> bool:
        try:
            self._cfn.update_stack(
                StackName=name,
                TemplateURL=template_url,
                Parameters=self._parameters(parameters),
                Capabilities=list(capabilities),
                Tags=self._tags(tags),
            )
        except ClientError as exc:
            if error_code(exc) == "ValidationError" and any(
                reason in error_message(exc) for reason in _NO_CHANGES_REASONS
            ):
                return False
            raise translate_client_error(exc, f"update {name}") from exc
        except _CONNECTION_ERRORS as exc:
            raise TransientProvisioningError(f"update {name}: {exc}") from exc
        logger.info("Submitted update for %s", name)
        return True

    def delete_stack(self, name: str) -> None:
        _call(f"delete {name}", self._cfn.delete_stack, StackName=name)
        logger.info("Submitted delete for %s", name)

    def describe_stack(self, name: str) -> StackDescription:
        response = _call(f"describe {name}", self._cfn.describe_stacks, StackName=name)
        stacks = response.get("Stacks", [])
        if not stacks:
            raise StackNotFound(f"Stack with id {name} does not exist")
        stack = stacks[0]
        updated = stack.get("LastUpdatedTime") or stack.get("CreationTime") or ""
        return StackDescription(
            name=stack["StackName"],
            status=stack["StackStatus"],
            status_reason=stack.get("StackStatusReason", ""),
            outputs={o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])},
            parameters={
                p["ParameterKey"]: p.get("ParameterValue", "")
                for p in stack.get("Parameters", [])
            },
            last_updated=str(updated),
        )

    def _change_set_type(self, name: str) -> str:
        """CREATE for a missing stack or one another CREATE changeset registered."""
        try:
            description = self.describe_stack(name)
        except StackNotFound:
            return "CREATE"
        return "CREATE" if is_placeholder(description.status) else "UPDATE"

    def create_change_set(
        self,
        name: str,
        changeset_name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: list[str],
        *,
        include_nested: bool = True,
    ) -> str:
        response = _call(
            f"create changeset {changeset_name}",
            self._cfn.create_change_set,
            StackName=name,
            ChangeSetName=changeset_name,
            TemplateURL=template_url,
            Parameters=self._parameters(parameters),
            Capabilities=list(capabilities),
            ChangeSetType=self._change_set_type(name),
            IncludeNestedStacks=include_nested,
        )
        return response["Id"]

    def describe_change_set(self, name: str, changeset_ref: str) -> list[dict[str, Any]]:
        """Wait for the changeset to finish computing and return its changes."""
        response: dict[str, Any] = {}
        for _ in range(self._max_polls):
            response = _call(
                f"describe changeset {changeset_ref}",
                self._cfn.describe_change_set,
                StackName=name,
                ChangeSetName=changeset_ref,
            )
            if response.get("Status") not in _CHANGESET_PENDING:
                break
            self._sleep(self._poll_seconds)
        else:
            raise TransientProvisioningError(
                f"changeset {changeset_ref} still computing after {self._max_polls} polls"
            )

        if response.get("Status") == "FAILED":
            reason = response.get("StatusReason", "")
            if any(r in reason for r in _NO_CHANGES_REASONS):
                return []
            raise ProvisioningFailed(f"changeset {changeset_ref} failed: {reason}")

        changes = list(response.get("Changes", []))
        token = response.get("NextToken")
        while token:
            page = _call(
                f"describe changeset {changeset_ref}",
                self._cfn.describe_change_set,
                StackName=name,
                ChangeSetName=changeset_ref,
                NextToken=token,
            )
            changes.extend(page.get("Changes", []))
            token = page.get("NextToken")
        return [_resource_change(c) for c in changes if c.get("Type") == "Resource"]

    def execute_change_set(self, name: str, changeset_ref: str) -> None:
        _call(
            f"execute changeset {changeset_ref}",
            self._cfn.execute_change_set,
            StackName=name,
            ChangeSetName=changeset_ref,
        )

    def delete_change_set(self, name: str, changeset_ref: str) -> None:
        _call(
            f"delete changeset {changeset_ref}",
            self._cfn.delete_change_set,
            StackName=name,
            ChangeSetName=changeset_ref,
        )


def _resource_change(change: dict[str, Any]) -> dict[str, Any]:
    rc = change.get("ResourceChange", {})
    nested = (
        rc.get("LogicalResourceId")
        if rc.get("ResourceType") == "AWS::CloudFormation::Stack" and rc.get("ChangeSetId")
        else None
    )
    return {
        "action": rc.get("Action", ""),
        "logical_id": rc.get("LogicalResourceId", ""),
        "resource_type": rc.get("ResourceType", ""),
        "replacement": rc.get("Replacement") == "True",
        "nested_stack": nested,
    }


class CloudFormationExportRegistry:
    """``ExportRegistry`` over CloudFormation ListExports/ListImports."""

    def __init__(self, client: Any = None, *, region: str | None = None) -> None:
        self._cfn = client or boto3.client("cloudformation", region_name=region)

    def list_exports(self, name: str | None = None) -> list[ExportRecord]:
        records: list[ExportRecord] = []
        token: str | None = None
        while True:
            kwargs = {"NextToken": token} if token else {}
            page = _call("list exports", self._cfn.list_exports, **kwargs)
            for export in page.get("Exports", []):
                if name is not None and export["Name"] != name:
                    continue
                records.append(
                    ExportRecord(
                        name=export["Name"],
                        value=export["Value"],
                        exporting_stack=_stack_name_from_id(export["ExportingStackId"]),
                    )
                )
            token = page.get("NextToken")
            if not token:
                return records

    def list_importers(self, export_name: str) -> list[str]:
        importers: list[str] = []
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"ExportName": export_name}
            if token:
                kwargs["NextToken"] = token
            try:
                page = self._cfn.list_imports(**kwargs)
            except ClientError as exc:
                if error_code(exc) == "ValidationError" and "is not imported" in error_message(exc):
                    return []
                raise translate_client_error(exc, f"list imports {export_name}") from exc
            except _CONNECTION_ERRORS as exc:
                raise TransientProvisioningError(f"list imports {export_name}: {exc}") from exc
            importers.extend(page.get("Imports", []))
            token = page.get("NextToken")
            if not token:
                return sorted(importers)


# ---------------------------------------------------------------------------
# SSM Parameter Store
# ---------------------------------------------------------------------------


class SsmParameterStore:
    """``ParameterStore`` over SSM, always reading an exact version."""

    def __init__(self, client: Any = None, *, region: str | None = None) -> None:
        self._ssm = client or boto3.client("ssm", region_name=region)

    def get_parameter(self, path: str, version: int) -> str:
        try:
            response = self._ssm.get_parameter(Name=f"{path}:{version}", WithDecryption=True)
        except ClientError as exc:
            code = error_code(exc)
            if code == "ParameterVersionNotFound":
                raise ParameterVersionMissing(f"{path}:{version}") from exc
            if code == "ParameterNotFound":
                raise ParameterPathMissing(path) from exc
            raise translate_client_error(exc, f"get parameter {path}:{version}") from exc
        except _CONNECTION_ERRORS as exc:
            raise TransientProvisioningError(f"get parameter {path}: {exc}") from exc
        return response["Parameter"]["Value"]


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------


class S3BlobStore:
    """``BlobStore`` over one S3 bucket.

    Objects are written with the bucket's defaults. ``ensure_bucket`` sets
    the bucket up the way ``stackforge bucket setup`` expects it; a bucket
    prepared some other way is used as it is.
    """

    def __init__(self, bucket: str, client: Any = None, *, region: str | None = None) -> None:
        if not bucket:
            raise ValueError("An artifact bucket name is required for the S3 blob store")
        self._bucket = bucket
        self._s3 = client or boto3.client("s3", region_name=region)

    def put(self, key: str, body: bytes) -> None:
        _call(f"put s3://{self._bucket}/{key}", self._s3.put_object, Bucket=self._bucket, Key=key, Body=body)

    def get(self, key: str) -> bytes:
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if error_code(exc) in ("NoSuchKey", "404"):
                raise FileNotFoundError(f"Object not found: s3://{self._bucket}/{key}") from exc
            raise translate_client_error(exc, f"get s3://{self._bucket}/{key}") from exc
        return response["Body"].read()

    def exists(self, key: str) -> bool:
        try:
            self._s3.head_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if error_code(exc) in ("404", "NoSuchKey", "NotFound"):
                return False
            raise translate_client_error(exc, f"head s3://{self._bucket}/{key}") from exc
        return True

    def url_for(self, key: str) -> str:
        region = self._s3.meta.region_name or "us-east-1"
        return f"https://{self._bucket}.s3.{region}.amazonaws.com/{key}"

    @property
    def bucket(self) -> str:
        return self._bucket

    def ensure_bucket(self) -> None:
        """Create the bucket if needed, then enable versioning and block public access.

        Safe to re-run: a bucket this account already owns is reconfigured in
        place. A name taken by another account raises ``ProvisioningFailed``.
        """
        region = self._s3.meta.region_name or "us-east-1"
        kwargs: dict[str, Any] = {"Bucket": self._bucket}
        # us-east-1 rejects an explicit location constraint.
        if region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
        try:
            self._s3.create_bucket(**kwargs)
            logger.info("Created bucket %s in %s", self._bucket, region)
        except ClientError as exc:
            if error_code(exc) != "BucketAlreadyOwnedByYou":
                raise translate_client_error(exc, f"create bucket {self._bucket}") from exc
            logger.info("Bucket %s already exists", self._bucket)
        except _CONNECTION_ERRORS as exc:
            raise TransientProvisioningError(f"create bucket {self._bucket}: {exc}") from exc

        _call(
            f"enable versioning on {self._bucket}",
            self._s3.put_bucket_versioning,
            Bucket=self._bucket,
            VersioningConfiguration={"Status": "Enabled"},
        )
        _call(
            f"block public access on {self._bucket}",
            self._s3.put_public_access_block,
            Bucket=self._bucket,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "IgnorePublicAcls": True,
                "BlockPublicPolicy": True,
                "RestrictPublicBuckets": True,
            },
        )
        logger.info("Bucket %s is versioned with public access blocked", self._bucket)

    def check(self) -> bool:
        """True if the bucket exists and these credentials can reach it."""
        try:
            self._s3.head_bucket(Bucket=self._bucket)
        except ClientError as exc:
            if error_code(exc) in ("404", "NoSuchBucket", "NotFound", "403", "Forbidden"):
                logger.warning("Bucket %s is not accessible (%s)", self._bucket, error_code(exc))
                return False
            raise translate_client_error(exc, f"head bucket {self._bucket}") from exc
        except _CONNECTION_ERRORS as exc:
            raise TransientProvisioningError(f"head bucket {self._bucket}: {exc}") from exc
        return True


def default_artifact_bucket(region: str, client: Any = None) -> str:
    """``cloudformation.<region>.<account id>`` for the calling account."""
    sts = client or boto3.client("sts", region_name=region)
    identity = _call("get caller identity", sts.get_caller_identity)
    return f"cloudformation.{region}.{identity['Account']}"
