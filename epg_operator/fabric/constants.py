"""Distinguished-name and object conventions of the fabric controller."""


class FabricConstants:
    EPG_DESCRIPTION = "created by kubernetes operator"

    # Managed object classes
    CLASS_EPG = "fvAEPg"
    CLASS_RS_BD = "fvRsBd"
    CLASS_RS_DOM_ATT = "fvRsDomAtt"
    CLASS_RS_CONS = "fvRsCons"
    CLASS_RS_PROV = "fvRsProv"
    CLASS_TOP_SYSTEM = "topSystem"

    # REST paths
    LOGIN_PATH = "/api/aaaLogin.json"
    MO_PATH = "/api/mo/{dn}.json"
    CLASS_PATH = "/api/node/class/{cls}.json"
    CHILD_CLASS_PATH = "/api/node/class/{dn}/{cls}.json"

    # Cookies
    COOKIE_TOKEN = "APIC-cookie"
    COOKIE_SIGNATURE = "APIC-Request-Signature"
    COOKIE_CERT_ALGORITHM = "APIC-Certificate-Algorithm"
    COOKIE_CERT_FINGERPRINT = "APIC-Certificate-Fingerprint"
    COOKIE_CERT_DN = "APIC-Certificate-DN"

    # Returned for class queries under a parent that has no such children yet
    MAY_NOT_EXIST = "may not exists"


def epg_name(namespace: str) -> str:
    return f"{namespace}_EPG"


def app_profile_dn(tenant: str, app: str) -> str:
    return f"uni/tn-{tenant}/ap-{app}"


def epg_dn(tenant: str, app: str, name: str) -> str:
    return f"{app_profile_dn(tenant, app)}/epg-{name}"


def vmm_domain_dn(vmm: str, vmm_type: str) -> str:
    return f"uni/vmmp-{vmm_type}/dom-{vmm}"


def consumer_rn(contract: str) -> str:
    return f"rscons-{contract}"


def provider_rn(contract: str) -> str:
    return f"rsprov-{contract}"


def admin_cert_name(user: str) -> str:
    return f"{user}.crt"


def orchestrator_annotation(vmm_type: str) -> str:
    return f"orchestrator:{vmm_type.lower()}"
