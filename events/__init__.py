"""Events app package

Stores the events that tickets are sold for.  The payments app reads
ticket price, free flag, schedule and organizer from here and adjusts
the remaining ticket inventory through the atomic helpers on
``Event.objects``.
"""
