"""
Gate side-effect services: audit log, live event notifier and
matched-decision forwarding.
"""
