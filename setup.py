from setuptools import setup

with open("README.md") as f:
    readme = f.read()

_ = setup(
    name="ldapbridge",
    version="1.0.0",
    license="MIT",
    long_description=readme,
    long_description_content_type="text/markdown",
    install_requires=[
        "impacket~=0.12.0",
        "ldap3~=2.9.1",
        "pyasn1~=0.6.1",
        "dnspython~=2.7.0",
        "pycryptodome~=3.22.0",
        "argcomplete",
    ],
    extras_require={
        "test": ["pytest"],
    },
    packages=[
        "ldapbridge",
        "ldapbridge.commands",
        "ldapbridge.commands.parsers",
        "ldapbridge.lib",
    ],
    entry_points={
        "console_scripts": ["ldapbridge=ldapbridge.entry:main"],
    },
    description="Open authenticated LDAP directory connections from flat settings",
)
