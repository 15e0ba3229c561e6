"""SQL Server option reconciler.

Declarative resource that keeps one server-level configuration option
(``sp_configure``) of a SQL Server instance at a desired value:
 - read the current value
 - test it against the desired value (optionally only on the active cluster node)
 - apply the desired value and decide whether the instance must be restarted

Collaborators (connection, cluster detection, service restart, host name) are
injected into the Reconciler so they can be swapped out in tests.
"""
