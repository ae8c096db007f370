"""Resource type registry: type tag → capability module."""

from apigw_ops.resources import (
    certificate,
    role,
    function,
    gateway_api,
    domain_name,
    method,
    deployment,
    stage,
    base_path_mapping,
    record,
)

# The closed set of provisionable types. Ordering between resources comes
# from the references in their properties, not from this list.
TYPE_MODULES = [
    certificate,
    role,
    function,
    gateway_api,
    domain_name,
    method,
    deployment,
    stage,
    base_path_mapping,
    record,
]

# Map resource type tag → module
RESOURCE_TYPES = {mod.RESOURCE_TYPE: mod for mod in TYPE_MODULES}
