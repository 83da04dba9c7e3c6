"""Link model and field-level import/export for external data."""

from story_mirror.external.errors import (
    ConflictingLinkError,
    DataNotFoundError,
    ExternalDataError,
    ObjectMovedError,
    ParentNotLinkedError,
    UnknownPolicyError,
)
from story_mirror.external.links import (
    Document,
    Link,
    ServerLike,
    add_link,
    attach_link,
    count_links,
    create_link,
    extend_link,
    find_link,
    find_link_by_server_type,
    fingerprint,
    inherit_link,
    is_match,
    public_part,
    remove_link,
)
from story_mirror.external.properties import (
    EXPORT_SNAPSHOT,
    IMPORT_SNAPSHOT,
    Overwrite,
    export_property,
    get_path,
    import_property,
    import_resource,
    parse_policy,
    set_path,
    unset_path,
)

__all__ = [
    # Errors
    "ConflictingLinkError",
    "DataNotFoundError",
    "ExternalDataError",
    "ObjectMovedError",
    "ParentNotLinkedError",
    "UnknownPolicyError",
    # Links
    "Document",
    "Link",
    "ServerLike",
    "add_link",
    "attach_link",
    "count_links",
    "create_link",
    "extend_link",
    "find_link",
    "find_link_by_server_type",
    "fingerprint",
    "inherit_link",
    "is_match",
    "public_part",
    "remove_link",
    # Properties
    "EXPORT_SNAPSHOT",
    "IMPORT_SNAPSHOT",
    "Overwrite",
    "export_property",
    "get_path",
    "import_property",
    "import_resource",
    "parse_policy",
    "set_path",
    "unset_path",
]
