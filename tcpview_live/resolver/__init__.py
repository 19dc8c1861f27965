from .channel import ResolverChannel, helper_command
