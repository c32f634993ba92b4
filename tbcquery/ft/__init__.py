"""Fungible-token query services: balances, catalog, history, pools and transaction decoding."""