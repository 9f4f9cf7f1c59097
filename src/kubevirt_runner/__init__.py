"""
gitlab-runner-kubevirt — run GitLab CI jobs in KubeVirt virtual machines.

A GitLab Runner custom executor driver. Each CI job gets its own
VirtualMachineInstance, created in ``prepare``, driven over SSH in
``run`` and deleted in ``cleanup``. Every stage is a separate process;
the only state they share is the instance object in the cluster.
"""

__version__ = "0.1.0"
__author__ = "gitlab-runner-kubevirt contributors"

DRIVER_NAME = "gitlab-runner-kubevirt"
LABEL_PREFIX = "gitlab-runner-kubevirt.snai.pe"
