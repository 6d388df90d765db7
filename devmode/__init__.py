"""devmode: a two-state operational guard for content-management hosts.

While *Active*, modification operations pass through. While *Protected*,
file edits, plugin/theme installs, user creation and dangerous uploads are
intercepted, denied and written to an audit log.
"""

__version__ = "1.1.1"
