"""
The CONTROLLER layer turns scene descriptions into packed buffers and drives
the animation tick. It operates on the data structures of the MODEL layer.
"""
