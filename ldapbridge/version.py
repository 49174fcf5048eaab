from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

try:
    version = get_version("ldapbridge")
except PackageNotFoundError:
    print(
        "Cannot determine ldapbridge version. "
        'If running from source you should at least run "pip install -e ."'
    )
    version = "?"

BANNER = "ldapbridge v{} - LDAP authentication bridge\n".format(version)
