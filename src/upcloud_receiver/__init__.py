"""
UpCloud metrics receiver.

Polls the UpCloud API for managed database and managed load balancer
metrics, normalizes them into gauge batches and hands each batch to a
downstream consumer.
"""

__version__ = "0.1.0"
