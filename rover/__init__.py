"""
rover package

Contains all onboard rover code: actuator arbitration, the collision-avoidance
safety monitor, heading correction, sensor and motor drivers, the camera
server, the control server and the main execution loop.
This package runs on the Raspberry Pi and directly interfaces with hardware.
"""
