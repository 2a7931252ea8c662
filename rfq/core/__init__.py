"""Engine core: domain, state, storage, settlement"""
