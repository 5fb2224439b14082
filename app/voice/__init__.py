"""Voice callbacks: tone detection, quiet hours, synthesis and telephony."""
