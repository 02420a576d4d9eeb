# External provider clients and payload mappers
