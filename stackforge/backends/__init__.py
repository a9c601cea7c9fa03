"""Collaborators the engine talks to but does not own.

Modules
-------
base
    Protocols (``BlobStore``, ``StackProvisioner``, ``ExportRegistry``,
    ``ParameterStore``) and the value types they exchange.
status
    Classification of provisioner status strings.
memory
    In-memory fakes for tests, demos and dry runs.
local
    Directory-backed blob store.
aws
    boto3 implementations over CloudFormation, S3 and SSM.
"""
