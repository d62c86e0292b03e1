"""
This module contains the containers shared by the clustering engines: reads carrying repeat occurrences,
the string interning store, and the arena of cluster groups.
"""
from drlib.containers.reads import ReadAnnotation, ReadRegistry, SequenceStore, StringStore, ReadError
from drlib.containers.cluster import ClusterGroup, GroupTable, GroupError
