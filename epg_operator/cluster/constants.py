"""Cluster-side names: the EpgConf CRD, its finalizer and the namespace annotation."""


class K8sConstants:
    # CRD configuration
    CRD_GROUP = "epg.custom.aci"
    CRD_VERSION = "v1alpha1"
    CRD_PLURAL = "epgconfs"
    CRD_KIND = "Epgconf"
    CRD_LIST_KIND = "EpgconfList"
    CRD_API_VERSION = f"{CRD_GROUP}/{CRD_VERSION}"  # epg.custom.aci/v1alpha1

    FINALIZER = "epg.custom.config/finalizer"

    # Annotation read by the opflex agent to place pods into the EPG
    ANNOTATION_ENDPOINT_GROUP = "opflex.cisco.com/endpoint-group"
    # JSON pointer form, "/" escaped as "~1"
    ANNOTATION_ENDPOINT_GROUP_PATH = "/metadata/annotations/opflex.cisco.com~1endpoint-group"

    STATE_READY = "Ready"
    STATE_FAILED = "Failed"

    # Patch content types
    STRATEGIC_MERGE_PATCH = "application/strategic-merge-patch+json"
    JSON_PATCH = "application/json-patch+json"
