"""
Concrete implementations: native engine, tensor handle, autograd, module
tree, operators and optimizers.
"""
