"""kubeprep: prepare a Linux host as a kubeadm cluster node."""

__version__ = "0.1.0"
