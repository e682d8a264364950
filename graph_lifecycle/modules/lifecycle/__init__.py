"""
Lifecycle stages run against a Store Session: schema provisioning, seeding,
updates, deletes and reads, sequenced by the LifecycleController.
"""
