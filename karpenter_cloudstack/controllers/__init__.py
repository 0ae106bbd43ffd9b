from karpenter_cloudstack.controllers.nodeclass import NodeClassReconciler, ReconcileResult

__all__ = ["NodeClassReconciler", "ReconcileResult"]
